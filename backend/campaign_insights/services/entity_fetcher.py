"""
Campaign hierarchy reads.

Ads are listed once for the whole campaign and grouped by ad set in memory,
so the number of upstream calls does not grow with the number of ad sets.
"""

from typing import Any, Dict, List, Optional

import structlog

from campaign_insights.errors import UpstreamError
from campaign_insights.services.chunker import fetch_chunked
from campaign_insights.services.date_ranges import DateRange
from campaign_insights.services.graph_client import GraphAPIClient, insights_field

logger = structlog.get_logger(__name__)

METRIC_FIELDS = ("spend", "impressions", "clicks", "reach")

AD_SET_FIELDS = (
    "name,status,effective_status,targeting,bid_strategy,billing_event,optimization_goal,"
    "promoted_object,daily_budget,lifetime_budget,start_time,end_time,"
    "publisher_platforms,platform_positions,device_platforms"
)

AD_FIELDS = (
    "name,status,adset_id,"
    "creative{id,name,title,body,image_url,thumbnail_url,video_id,call_to_action_type,"
    "object_story_spec{link_data{link,child_attachments}},object_story_id,object_url,object_type,link_url},"
    "adcreatives{image_url,thumbnail_url,video_id,object_story_id,object_url,object_type,object_story_spec}"
)


class EntityFetcher:
    """Reads the campaign, its ad sets and its ads for one request."""

    def __init__(
        self,
        client: GraphAPIClient,
        ad_sets_limit: int = 100,
        ads_limit: int = 500,
        chunk_max_days: int = 14,
    ):
        self.client = client
        self.ad_sets_limit = ad_sets_limit
        self.ads_limit = ads_limit
        self.chunk_max_days = chunk_max_days

    async def fetch_campaign(self, campaign_id: str, date_range: DateRange) -> Dict[str, Any]:
        """Campaign fields plus its time-ranged insights. Failures propagate."""
        return await self.client.get(
            campaign_id,
            {"fields": f"name,objective,status,{insights_field(date_range, METRIC_FIELDS)}"},
            timeout=self.client.entity_timeout,
        )

    async def fetch_daily_stats(self, campaign_id: str, date_range: DateRange) -> List[Dict[str, Any]]:
        """Daily campaign rows, chunked for long ranges. Failures propagate."""
        return await fetch_chunked(
            self.client,
            f"{campaign_id}/insights",
            {
                "fields": "spend,impressions,clicks,reach,date_start",
                "time_increment": 1,
                "level": "campaign",
            },
            date_range,
            max_days=self.chunk_max_days,
        )

    async def fetch_ad_sets(self, campaign_id: str, date_range: DateRange) -> List[Dict[str, Any]]:
        """All ad sets under the campaign. Failures propagate."""
        return await self.client.get_paginated(
            f"{campaign_id}/adsets",
            {
                "fields": f"{AD_SET_FIELDS},{insights_field(date_range, METRIC_FIELDS)}",
                "limit": self.ad_sets_limit,
            },
        )

    async def fetch_all_ads(self, campaign_id: str, date_range: DateRange) -> List[Dict[str, Any]]:
        """Every ad under the campaign in a single listing. Failures propagate."""
        return await self.client.get_paginated(
            f"{campaign_id}/ads",
            {
                "fields": f"{AD_FIELDS},{insights_field(date_range, METRIC_FIELDS)}",
                "limit": self.ads_limit,
            },
        )

    async def fetch_ads_by_ad_set(
        self, campaign_id: str, date_range: DateRange
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Ads grouped by parent ad set id.

        If the listing fails the result is empty and every ad set ends up
        with zero ads.
        """
        try:
            ads = await self.fetch_all_ads(campaign_id, date_range)
        except UpstreamError as e:
            logger.error("all_ads_fetch_failed", campaign_id=campaign_id, **e.log_context())
            return {}
        return group_ads_by_ad_set(ads)

    async def fetch_targeting(self, ad_set_id: str) -> Optional[Dict[str, Any]]:
        """Targeting spec for one ad set, or None when the read fails."""
        try:
            data = await self.client.get(
                ad_set_id, {"fields": "targeting"}, timeout=self.client.entity_timeout
            )
        except UpstreamError as e:
            logger.warning("ad_set_targeting_fetch_failed", ad_set_id=ad_set_id, **e.log_context())
            return None
        return data.get("targeting")


def group_ads_by_ad_set(ads: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """Group raw ads by ``adset_id``, keeping upstream order. Orphans are dropped."""
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for ad in ads:
        ad_set_id = ad.get("adset_id")
        if not ad_set_id:
            continue
        grouped.setdefault(str(ad_set_id), []).append(ad)
    return grouped
