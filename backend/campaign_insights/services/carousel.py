"""
Per-card click attribution for carousel ads.

The platform no longer reliably reports clicks per carousel card, so each
card is resolved through three tiers, first hit wins:

1. ``card_breakdown``  - insights broken down by carousel card id
2. ``destination_url`` - insights broken down by destination URL, matched on
   the card's ``utm_content``
3. ``estimated``       - a triangular share of the ad's total clicks, earlier
   cards weighted higher

The estimate is a product heuristic, not a measurement: card estimates are
not forced to add up to the ad's clicks beyond rounding.
"""

import re
from typing import Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import unquote

import structlog
from pydantic import ValidationError as PydanticValidationError

from campaign_insights.errors import UpstreamError
from campaign_insights.models.graph import ChildAttachment, GraphAd, InsightRow
from campaign_insights.models.schemas import Ad, CarouselCard
from campaign_insights.services.date_ranges import DateRange
from campaign_insights.services.graph_client import GraphAPIClient, time_range_param

logger = structlog.get_logger(__name__)

CLICK_ACTION_TYPES = ("link_click", "onsite_web_click")

CARD_BREAKDOWN = "action_carousel_card_id"
DESTINATION_BREAKDOWN = "action_destination"

_UTM_CONTENT = re.compile(r"[?&]utm_content=([^&#]+)")


def substitute_template_vars(url: str, campaign_name: str, ad_name: str) -> str:
    """Replace ``{{campaign.name}}`` and ``{{ad.name}}`` in a card link."""
    if not url:
        return ""
    return url.replace("{{campaign.name}}", campaign_name).replace("{{ad.name}}", ad_name)


def extract_utm_content(url: str) -> str:
    match = _UTM_CONTENT.search(url or "")
    return unquote(match.group(1)) if match else ""


def estimated_share(total_clicks: int, index: int, count: int) -> int:
    """
    Triangular share of ``total_clicks`` for card ``index`` of ``count``.

    Weight is (count - index) / (count * (count + 1) / 2); halves round up.
    """
    if count <= 0 or index < 0 or index >= count:
        return 0
    weight = (count - index) / (count * (count + 1) / 2)
    return int(total_clicks * weight + 0.5)


def _rows(raw_rows: Sequence[Dict]) -> List[InsightRow]:
    rows = []
    for raw in raw_rows:
        try:
            rows.append(InsightRow.model_validate(raw))
        except PydanticValidationError:
            logger.warning("carousel_insight_row_unparseable", row=raw)
    return rows


def direct_card_clicks(rows: Sequence[InsightRow], index: int) -> Optional[int]:
    """Clicks reported for card ``index``, or None when no row matches."""
    card_id = str(index)
    for action_type in CLICK_ACTION_TYPES:
        for row in rows:
            for action in row.actions:
                action_card = action.action_carousel_card_id or row.action_carousel_card_id
                if action_card == card_id and action.action_type == action_type:
                    return int(action.value)
    return None


def destination_clicks(rows: Sequence[InsightRow], utm_content: str) -> Optional[int]:
    """Sum of click actions whose destination carries ``utm_content``."""
    if not utm_content:
        return None

    matched = False
    total = 0.0
    for row in rows:
        for action in row.actions:
            destination = action.action_destination or row.action_destination or ""
            if utm_content in destination and action.action_type in CLICK_ACTION_TYPES:
                matched = True
                total += action.value
    return int(total) if matched else None


class _AdLookups:
    """
    Per-ad memo of the breakdown and creative reads, so every card of one
    ad shares a single request per breakdown. A failed read is remembered
    and re-raised to each card that asks for it.
    """

    def __init__(self, resolver: "CarouselAttributionResolver", ad_id: str):
        self.resolver = resolver
        self.ad_id = ad_id
        self._rows: Dict[str, Union[List[InsightRow], UpstreamError]] = {}
        self._attachments: Optional[List[ChildAttachment]] = None

    async def rows(self, breakdown: str) -> List[InsightRow]:
        if breakdown not in self._rows:
            try:
                self._rows[breakdown] = await self.resolver._breakdown_rows(self.ad_id, breakdown)
            except UpstreamError as e:
                self._rows[breakdown] = e
        result = self._rows[breakdown]
        if isinstance(result, UpstreamError):
            raise result
        return result

    async def attachments(self) -> List[ChildAttachment]:
        if self._attachments is None:
            self._attachments = await self.resolver._attachments(self.ad_id)
        return self._attachments


class CarouselAttributionResolver:
    """Resolves carousel cards for the ads of one campaign request."""

    def __init__(self, client: GraphAPIClient, date_range: DateRange):
        self.client = client
        self.date_range = date_range

    async def _breakdown_rows(self, ad_id: str, breakdown: str) -> List[InsightRow]:
        raw_rows = await self.client.get_paginated(
            f"{ad_id}/insights",
            {
                "fields": "actions",
                "action_breakdowns": breakdown,
                "time_range": time_range_param(self.date_range),
            },
        )
        return _rows(raw_rows)

    async def _attachments(self, ad_id: str) -> List[ChildAttachment]:
        """The creative's child attachments; empty when the read fails or does not parse."""
        try:
            data = await self.client.get(
                ad_id,
                {"fields": "creative{object_story_spec{link_data{child_attachments}}}"},
                timeout=self.client.entity_timeout,
            )
        except UpstreamError as e:
            logger.warning("carousel_card_image_failed", ad_id=ad_id, **e.log_context())
            return []

        try:
            return GraphAd.model_validate({**data, "id": ad_id}).creative.child_attachments
        except PydanticValidationError as e:
            logger.warning("carousel_creative_unparseable", ad_id=ad_id, errors=e.error_count())
            return []

    async def _card_image(self, lookups: _AdLookups, index: int) -> str:
        attachments = await lookups.attachments()
        if index < len(attachments):
            return attachments[index].image_url or attachments[index].picture or ""
        return ""

    async def _card_clicks(
        self, ad: Ad, lookups: _AdLookups, index: int, count: int, utm_content: str
    ) -> Tuple[int, str]:
        try:
            clicks = direct_card_clicks(await lookups.rows(CARD_BREAKDOWN), index)
            if clicks is not None:
                return clicks, "card_breakdown"

            clicks = destination_clicks(await lookups.rows(DESTINATION_BREAKDOWN), utm_content)
            if clicks is not None:
                return clicks, "destination_url"
        except UpstreamError as e:
            logger.warning("carousel_card_insights_failed", ad_id=ad.id, card_index=index, **e.log_context())

        return estimated_share(ad.metrics.clicks, index, count), "estimated"

    async def resolve_card(
        self,
        ad: Ad,
        card: CarouselCard,
        index: int,
        count: int,
        campaign_name: str,
        lookups: Optional[_AdLookups] = None,
    ) -> CarouselCard:
        lookups = lookups or _AdLookups(self, ad.id)
        link_url = substitute_template_vars(card.link_url, campaign_name, ad.name)
        utm_content = extract_utm_content(link_url)

        image_url = card.image_url
        if not image_url:
            image_url = await self._card_image(lookups, index)

        clicks, source = await self._card_clicks(ad, lookups, index, count, utm_content)

        return card.model_copy(update={
            "link_url": link_url,
            "utm_content": utm_content,
            "image_url": image_url,
            "actual_clicks": clicks,
            "click_source": source,
        })

    async def resolve_ad(self, ad: Ad, campaign_name: str) -> Ad:
        """Resolve every card of a carousel ad, one card at a time."""
        if ad.format != "carousel" or not ad.carousel_cards:
            return ad

        cards = ad.carousel_cards
        lookups = _AdLookups(self, ad.id)
        resolved = []
        for index, card in enumerate(cards):
            resolved.append(
                await self.resolve_card(ad, card, index, len(cards), campaign_name, lookups)
            )

        logger.info(
            "carousel_cards_resolved",
            ad_id=ad.id,
            cards=len(resolved),
            sources=[card.click_source for card in resolved],
        )
        return ad.model_copy(update={"carousel_cards": resolved})
