"""
Campaign details orchestration.

Fans out the campaign read, daily and hourly insights, the ad-set list and
the single all-ads listing concurrently, then assembles each ad set
(targeting, audience, placement, budget, schedule, ads) concurrently across
ad sets. Only the campaign read and the ad-set list are required; every
other branch degrades to an empty or zeroed value.
"""

import asyncio
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from campaign_insights.config import Settings, get_settings
from campaign_insights.errors import UpstreamError
from campaign_insights.models.graph import GraphAdSet, Targeting
from campaign_insights.models.schemas import (
    Ad,
    AdSet,
    CampaignDetails,
    DailyStat,
    MetricTotals,
)
from campaign_insights.services.audience import AudienceFormatter, ZipCodeResolver
from campaign_insights.services.cache import TTLCache
from campaign_insights.services.carousel import CarouselAttributionResolver
from campaign_insights.services.date_ranges import DateRange
from campaign_insights.services.entity_fetcher import EntityFetcher
from campaign_insights.services.graph_client import GraphAPIClient
from campaign_insights.services.hourly import HourlyInsightsReconciler
from campaign_insights.services.normalize import (
    metrics_from_row,
    normalize_ads,
    normalize_budget,
    normalize_campaign,
    normalize_daily_stats,
    normalize_placement,
    normalize_schedule,
    parse_ad_set,
    parse_targeting,
)

logger = structlog.get_logger(__name__)


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def _share(part: float, whole: float) -> float:
    return part / whole if whole > 0 else 0.0


def apportion_daily_stats(
    daily_stats: List[DailyStat], ad_metrics: MetricTotals, campaign_metrics: MetricTotals
) -> List[DailyStat]:
    """
    Per-ad daily series derived from the campaign's daily series.

    Each day is scaled by the ad's share of campaign spend, impressions and
    clicks over the whole range; reach follows the impression share.
    """
    spend_share = _share(ad_metrics.spend, campaign_metrics.spend)
    impression_share = _share(ad_metrics.impressions, campaign_metrics.impressions)
    click_share = _share(ad_metrics.clicks, campaign_metrics.clicks)

    return [
        DailyStat(
            date=day.date,
            spend=round(day.spend * spend_share, 2),
            impressions=_round_half_up(day.impressions * impression_share),
            clicks=_round_half_up(day.clicks * click_share),
            reach=_round_half_up(day.reach * impression_share),
        )
        for day in daily_stats
    ]


class CampaignDetailsService:
    """Builds the full campaign -> ad set -> ad tree for one request."""

    def __init__(
        self,
        client: GraphAPIClient,
        cache: Optional[TTLCache] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.client = client
        self.timezone = settings.business_timezone
        self.fetcher = EntityFetcher(
            client,
            ad_sets_limit=settings.ad_sets_page_limit,
            ads_limit=settings.ads_page_limit,
            chunk_max_days=settings.chunk_max_days,
        )
        self.hourly = HourlyInsightsReconciler(client, row_limit=settings.hourly_row_limit)
        self.audience = AudienceFormatter(
            ZipCodeResolver(client, cache, batch_size=settings.zip_batch_size)
        )

    async def _daily_stats(self, campaign_id: str, date_range: DateRange) -> List[DailyStat]:
        try:
            rows = await self.fetcher.fetch_daily_stats(campaign_id, date_range)
        except UpstreamError as e:
            logger.error("daily_stats_failed", campaign_id=campaign_id, **e.log_context())
            return []
        return normalize_daily_stats(rows)

    async def _targeting(self, ad_set_id: str, targeting: Optional[Targeting]) -> Targeting:
        """The ad set's targeting, re-read on its own when locations are missing."""
        if targeting is not None and targeting.geo_locations is not None:
            return targeting

        refreshed = await self.fetcher.fetch_targeting(ad_set_id)
        if refreshed:
            logger.info("ad_set_targeting_refreshed", ad_set_id=ad_set_id)
            return parse_targeting(refreshed)
        return targeting or Targeting()

    async def _build_ads(
        self,
        raw_ads: List[Dict[str, Any]],
        resolver: CarouselAttributionResolver,
        campaign_name: str,
        daily_stats: List[DailyStat],
        campaign_metrics: MetricTotals,
    ) -> List[Ad]:
        ads = normalize_ads(raw_ads)
        ads = await asyncio.gather(*(resolver.resolve_ad(ad, campaign_name) for ad in ads))
        return [
            ad.model_copy(update={
                "daily_stats": apportion_daily_stats(daily_stats, ad.metrics, campaign_metrics),
            })
            for ad in ads
        ]

    async def _build_ad_set(
        self,
        ad_set: GraphAdSet,
        raw_ads: List[Dict[str, Any]],
        resolver: CarouselAttributionResolver,
        campaign_name: str,
        daily_stats: List[DailyStat],
        campaign_metrics: MetricTotals,
    ) -> AdSet:
        targeting = await self._targeting(ad_set.id, ad_set.targeting)

        audience, ads = await asyncio.gather(
            self.audience.build_audience(targeting),
            self._build_ads(raw_ads, resolver, campaign_name, daily_stats, campaign_metrics),
        )

        return AdSet(
            id=ad_set.id,
            name=ad_set.name,
            status=ad_set.status,
            audience=audience,
            placements=normalize_placement(ad_set, targeting),
            budget=normalize_budget(ad_set),
            schedule=normalize_schedule(ad_set, self.timezone),
            metrics=metrics_from_row(ad_set.insights.first()),
            ads=ads,
        )

    def _parse_ad_sets(self, raw_ad_sets: List[Dict[str, Any]]) -> List[GraphAdSet]:
        ad_sets = []
        for raw in raw_ad_sets:
            try:
                ad_sets.append(parse_ad_set(raw))
            except PydanticValidationError as e:
                logger.warning("ad_set_unparseable", row=raw, errors=e.error_count())
        return ad_sets

    async def get_campaign_details(self, campaign_id: str, date_range: DateRange) -> CampaignDetails:
        """
        Full details for one campaign over ``date_range``.

        Raises:
            UpstreamError: the campaign read or the ad-set list failed
        """
        results = await asyncio.gather(
            self.fetcher.fetch_campaign(campaign_id, date_range),
            self._daily_stats(campaign_id, date_range),
            self.hourly.fetch(campaign_id, date_range),
            self.fetcher.fetch_ad_sets(campaign_id, date_range),
            self.fetcher.fetch_ads_by_ad_set(campaign_id, date_range),
            return_exceptions=True,
        )
        # Let every branch settle before surfacing a required failure
        for result in results:
            if isinstance(result, BaseException):
                raise result
        raw_campaign, daily_stats, hourly, raw_ad_sets, ads_by_ad_set = results

        campaign = normalize_campaign(raw_campaign, campaign_id)
        resolver = CarouselAttributionResolver(self.client, date_range)

        ad_sets = await asyncio.gather(*(
            self._build_ad_set(
                ad_set,
                ads_by_ad_set.get(ad_set.id, []),
                resolver,
                campaign.name,
                daily_stats,
                campaign.metrics,
            )
            for ad_set in self._parse_ad_sets(raw_ad_sets)
        ))
        campaign = campaign.model_copy(update={"ad_sets": list(ad_sets)})

        logger.info(
            "campaign_details_assembled",
            campaign_id=campaign_id,
            ad_sets=len(ad_sets),
            ads=sum(len(ad_set.ads) for ad_set in ad_sets),
            daily_points=len(daily_stats),
            date_range=f"{date_range.start_date} to {date_range.end_date}",
        )

        return CampaignDetails(
            campaign=campaign,
            daily_stats=daily_stats,
            hourly_stats=hourly.slots,
            hourly_totals=hourly.totals,
        )
