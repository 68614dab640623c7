"""
Normalization stage: raw Graph API JSON -> internal schemas.

This is the only module that interprets raw payload shapes. Everything it
returns is a ``campaign_insights.models.schemas`` object.
"""

from typing import Any, Dict, Iterable, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from campaign_insights.errors import UpstreamError
from campaign_insights.models.graph import (
    GraphAd,
    GraphAdSet,
    GraphCampaign,
    GraphCreative,
    InsightRow,
    Targeting,
)
from campaign_insights.models.schemas import (
    Ad,
    AdMetrics,
    Budget,
    Campaign,
    CarouselCard,
    DailyStat,
    MetricTotals,
    Placement,
    Schedule,
)
from campaign_insights.services.date_ranges import to_business_date

logger = structlog.get_logger(__name__)

GENDERS = {1: "male", 2: "female"}

POSITION_FIELDS = (
    "facebook_positions",
    "instagram_positions",
    "audience_network_positions",
    "messenger_positions",
)


def metrics_from_row(row: InsightRow) -> MetricTotals:
    return MetricTotals(
        spend=row.spend,
        impressions=row.impressions,
        clicks=row.clicks,
        reach=row.reach,
    )


def ad_metrics_from_row(row: InsightRow) -> AdMetrics:
    ctr = round(row.clicks / row.impressions * 100, 2) if row.impressions > 0 else 0.0
    return AdMetrics(
        spend=row.spend,
        impressions=row.impressions,
        clicks=row.clicks,
        reach=row.reach,
        ctr=ctr,
    )


def normalize_campaign(raw: Dict[str, Any], campaign_id: str) -> Campaign:
    """
    Raises:
        UpstreamError: the campaign body does not parse
    """
    try:
        parsed = GraphCampaign.model_validate(raw)
    except PydanticValidationError as e:
        raise UpstreamError(
            "Malformed response body", body=raw, endpoint=campaign_id
        ) from e
    return Campaign(
        id=campaign_id,
        name=parsed.name,
        objective=parsed.objective,
        status=parsed.status,
        metrics=metrics_from_row(parsed.insights.first()),
    )


def normalize_daily_stats(rows: Iterable[Dict[str, Any]]) -> List[DailyStat]:
    """Daily rows keyed ``YYYYMMDD``; undated or unparseable rows are skipped."""
    stats = []
    for raw in rows:
        if not raw:
            continue
        try:
            row = InsightRow.model_validate(raw)
        except PydanticValidationError:
            logger.warning("daily_row_unparseable", row=raw)
            continue
        if not row.date_start:
            continue
        stats.append(DailyStat(
            date=row.date_start[:10].replace("-", ""),
            spend=row.spend,
            impressions=row.impressions,
            clicks=row.clicks,
            reach=row.reach,
        ))
    return stats


# ---------------------------------------------------------------------------
# Ads
# ---------------------------------------------------------------------------


def _first_non_empty(*values: Optional[str]) -> str:
    for value in values:
        if value:
            return value
    return ""


def _media_urls(creative: GraphCreative, fallback: GraphCreative) -> Dict[str, str]:
    """Media and thumbnail URL, trying creative fields before ``adcreatives``."""
    thumbnail_url = _first_non_empty(creative.thumbnail_url, fallback.thumbnail_url)

    if creative.video_id or fallback.video_id:
        # For videos, prefer thumbnails
        media_url = _first_non_empty(
            creative.thumbnail_url,
            fallback.thumbnail_url,
            creative.image_url,
            fallback.image_url,
            creative.object_url,
            fallback.object_url,
        )
    else:
        media_url = _first_non_empty(
            creative.image_url,
            creative.thumbnail_url,
            fallback.image_url,
            fallback.thumbnail_url,
            creative.object_url,
            fallback.object_url,
        )

    return {"media_url": media_url, "thumbnail_url": thumbnail_url}


def carousel_cards_from_creative(creative: GraphCreative) -> List[CarouselCard]:
    return [
        CarouselCard(
            headline=_first_non_empty(card.name, card.title),
            description=card.description or "",
            image_url=_first_non_empty(card.image_url, card.picture),
            link_url=_first_non_empty(card.url, card.link),
        )
        for card in creative.child_attachments
    ]


def normalize_ad(raw: Dict[str, Any]) -> Ad:
    """
    Build an ``Ad`` from one row of the campaign's ads listing.

    Carousel cards come back unresolved (no click attribution yet).
    """
    parsed = GraphAd.model_validate(raw)
    creative = parsed.creative
    fallback = parsed.adcreatives.data[0] if parsed.adcreatives.data else GraphCreative()

    cards = carousel_cards_from_creative(creative)
    video_id = creative.video_id or fallback.video_id

    if cards:
        ad_format = "carousel"
    elif video_id:
        ad_format = "video"
    else:
        ad_format = "image"

    link_data = creative.object_story_spec.link_data if creative.object_story_spec else None

    return Ad(
        id=parsed.id,
        name=parsed.name,
        adset_id=parsed.adset_id or "",
        status=parsed.status,
        format=ad_format,
        video_id=video_id,
        text=creative.body or "",
        headline=creative.title or "",
        cta=creative.call_to_action_type or "",
        destination=_first_non_empty(creative.link_url, link_data.link if link_data else None),
        carousel_cards=cards or None,
        metrics=ad_metrics_from_row(parsed.insights.first()),
        **_media_urls(creative, fallback),
    )


def normalize_ads(raw_ads: Iterable[Dict[str, Any]]) -> List[Ad]:
    """Normalize an ads listing, dropping rows that do not parse."""
    ads = []
    for raw in raw_ads:
        try:
            ads.append(normalize_ad(raw))
        except PydanticValidationError as e:
            logger.warning("ad_unparseable", row=raw, errors=e.error_count())
    return ads


# ---------------------------------------------------------------------------
# Ad sets
# ---------------------------------------------------------------------------


def parse_ad_set(raw: Dict[str, Any]) -> GraphAdSet:
    return GraphAdSet.model_validate(raw)


def parse_targeting(raw: Optional[Dict[str, Any]]) -> Targeting:
    return Targeting.model_validate(raw or {})


def normalize_budget(ad_set: GraphAdSet) -> Budget:
    """Budgets arrive in minor currency units (cents)."""
    for budget_type, value in (("daily", ad_set.daily_budget), ("lifetime", ad_set.lifetime_budget)):
        if not value:
            continue
        try:
            amount = float(value) / 100
        except ValueError:
            logger.warning("unparseable_budget", ad_set_id=ad_set.id, value=value)
            continue
        if amount > 0:
            return Budget(type=budget_type, amount=amount)
    return Budget()


def normalize_schedule(ad_set: GraphAdSet, timezone: str = "UTC") -> Schedule:
    return Schedule(
        start_date=to_business_date(ad_set.start_time, timezone),
        end_date=to_business_date(ad_set.end_time, timezone),
    )


def normalize_placement(ad_set: GraphAdSet, targeting: Targeting) -> Placement:
    """
    Manual placements are detected when both platforms and positions are
    pinned. Ad-set level fields win over the targeting spec's.
    """
    platforms = ad_set.publisher_platforms or targeting.publisher_platforms
    positions = list(ad_set.platform_positions)
    if not positions:
        for field in POSITION_FIELDS:
            for position in getattr(targeting, field):
                if position not in positions:
                    positions.append(position)
    devices = ad_set.device_platforms or targeting.device_platforms

    return Placement(
        type="manual" if platforms and positions else "automatic",
        platforms=platforms,
        positions=positions,
        devices=devices,
    )


def age_range(targeting: Targeting) -> str:
    if targeting.age_min and targeting.age_max:
        return f"{targeting.age_min}-{targeting.age_max}"
    return "all"


def gender(targeting: Targeting) -> str:
    if len(targeting.genders) == 1:
        return GENDERS.get(targeting.genders[0], "all")
    return "all"
