"""
Ad account overview: daily account-level insights, totals and the
campaigns that spent in the window.
"""

import asyncio
from typing import List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from campaign_insights.config import Settings, get_settings
from campaign_insights.errors import UpstreamError
from campaign_insights.models.graph import GraphCampaign
from campaign_insights.models.schemas import (
    AccountOverview,
    CampaignSummary,
    DailyStat,
    MetricTotals,
)
from campaign_insights.services.cache import TTLCache
from campaign_insights.services.chunker import fetch_chunked
from campaign_insights.services.date_ranges import DateRange
from campaign_insights.services.entity_fetcher import METRIC_FIELDS
from campaign_insights.services.graph_client import GraphAPIClient, insights_field
from campaign_insights.services.normalize import metrics_from_row, normalize_daily_stats

logger = structlog.get_logger(__name__)

ACCOUNT_PREFIX = "act_"


def normalize_account_id(account_id: str) -> str:
    """``123`` -> ``act_123``; already-prefixed ids are returned as is."""
    account_id = str(account_id).strip()
    if account_id.startswith(ACCOUNT_PREFIX):
        return account_id
    return f"{ACCOUNT_PREFIX}{account_id}"


def sum_daily_stats(daily: List[DailyStat]) -> MetricTotals:
    return MetricTotals(
        spend=round(sum(day.spend for day in daily), 2),
        impressions=sum(day.impressions for day in daily),
        clicks=sum(day.clicks for day in daily),
        reach=sum(day.reach for day in daily),
    )


class AccountOverviewService:
    """Account-level insights, cached per account and window."""

    def __init__(
        self,
        client: GraphAPIClient,
        cache: Optional[TTLCache] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.client = client
        self.cache = cache if cache is not None else TTLCache(settings.cache_ttl_seconds)
        self.cache_ttl = settings.cache_ttl_seconds
        self.chunk_max_days = settings.chunk_max_days
        self.campaigns_limit = settings.ad_sets_page_limit

    async def _daily(self, account_id: str, date_range: DateRange) -> List[DailyStat]:
        rows = await fetch_chunked(
            self.client,
            f"{account_id}/insights",
            {
                "fields": "spend,impressions,clicks,reach,date_start",
                "time_increment": 1,
                "level": "account",
            },
            date_range,
            max_days=self.chunk_max_days,
        )
        return normalize_daily_stats(rows)

    async def _campaigns(self, account_id: str, date_range: DateRange) -> List[CampaignSummary]:
        """Campaigns with spend in the window; empty when the listing fails."""
        try:
            rows = await self.client.get_paginated(
                f"{account_id}/campaigns",
                {
                    "fields": f"name,objective,status,{insights_field(date_range, METRIC_FIELDS)}",
                    "limit": self.campaigns_limit,
                },
            )
        except UpstreamError as e:
            logger.warning("account_campaigns_failed", account_id=account_id, **e.log_context())
            return []

        summaries = []
        for raw in rows:
            try:
                campaign = GraphCampaign.model_validate(raw)
            except PydanticValidationError:
                logger.warning("account_campaign_unparseable", account_id=account_id, row=raw)
                continue
            metrics = metrics_from_row(campaign.insights.first())
            if metrics.spend <= 0:
                continue
            summaries.append(CampaignSummary(
                id=campaign.id or "",
                name=campaign.name,
                objective=campaign.objective,
                status=campaign.status,
                metrics=metrics,
            ))
        return summaries

    async def get_overview(self, account_id: str, date_range: DateRange) -> AccountOverview:
        """
        Overview for ``account_id`` over ``date_range``.

        Cached entries are scoped to the client's credential, so a token
        only ever reads back an overview it fetched itself.

        Raises:
            UpstreamError: the account insights read failed
        """
        account_id = normalize_account_id(account_id)
        cache_key = (
            "account_overview",
            self.client.token_fingerprint,
            account_id,
            date_range.start_date,
            date_range.end_date,
        )

        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("account_overview_cache_hit", account_id=account_id)
            return cached

        results = await asyncio.gather(
            self._daily(account_id, date_range),
            self._campaigns(account_id, date_range),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        daily, campaigns = results

        overview = AccountOverview(
            account_id=account_id,
            totals=sum_daily_stats(daily),
            daily_data=daily,
            campaigns=campaigns,
        )
        self.cache.set(cache_key, overview, ttl_seconds=self.cache_ttl)

        logger.info(
            "account_overview_fetched",
            account_id=account_id,
            days=len(daily),
            campaigns=len(campaigns),
            total_spend=overview.totals.spend,
        )
        return overview
