"""
Hourly insights reconciliation.

The platform buckets hourly rows by the audience's timezone, so a campaign's
hours near midnight can land on the neighbouring UTC day. We query one extra
day on each side, then filter back to the requested window and count each
(date, hour) bucket exactly once.
"""

import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import structlog
from pydantic import ValidationError as PydanticValidationError

from campaign_insights.errors import UpstreamError
from campaign_insights.models.graph import InsightRow
from campaign_insights.models.schemas import HourlyProfile, HourlySlot, MetricTotals
from campaign_insights.services.date_ranges import DateRange
from campaign_insights.services.graph_client import GraphAPIClient, time_range_param

logger = structlog.get_logger(__name__)

HOUR_BREAKDOWN = "hourly_stats_aggregated_by_audience_time_zone"
HOURS_PER_DAY = 24
SPEND_PRECISION = 6

_LEADING_INT = re.compile(r"^\s*(\d+)")


def empty_hourly_profile() -> HourlyProfile:
    """24 zeroed slots and zero totals."""
    return HourlyProfile(
        slots=[HourlySlot(hour=hour) for hour in range(HOURS_PER_DAY)],
        totals=MetricTotals(),
    )


def parse_hour(value: Optional[str]) -> Optional[int]:
    """``"13:00:00 - 13:59:59"`` -> 13. Unparseable values give None."""
    if value is None:
        return None
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def _parse_row(raw: Dict[str, Any]) -> Optional[InsightRow]:
    try:
        return InsightRow.model_validate(raw)
    except PydanticValidationError:
        logger.warning("hourly_row_unparseable", row=raw)
        return None


def reconcile_hourly_rows(rows: Iterable[Dict[str, Any]], date_range: DateRange) -> HourlyProfile:
    """
    Sum hour-bucketed rows into a 24-slot profile.

    Rows dated outside ``date_range`` or with an hour outside 0-23 are
    dropped. When the same (date, hour) bucket appears more than once the
    first row wins. Totals are computed from the slots, so they always equal
    the sum of the 24 buckets.
    """
    slots = [HourlySlot(hour=hour) for hour in range(HOURS_PER_DAY)]
    seen: Set[Tuple[str, int]] = set()

    for raw in rows:
        row = _parse_row(raw)
        if row is None or not row.date_start:
            continue

        try:
            row_date = date.fromisoformat(row.date_start[:10])
        except ValueError:
            continue
        if not date_range.contains(row_date):
            continue

        hour = parse_hour(row.hourly_stats_aggregated_by_audience_time_zone)
        if hour is None or hour < 0 or hour >= HOURS_PER_DAY:
            continue

        key = (row_date.isoformat(), hour)
        if key in seen:
            continue
        seen.add(key)

        slot = slots[hour]
        slot.spend += row.spend
        slot.impressions += row.impressions
        slot.clicks += row.clicks
        slot.reach += row.reach

    for slot in slots:
        slot.spend = round(slot.spend, SPEND_PRECISION)

    totals = MetricTotals(
        spend=round(sum(slot.spend for slot in slots), SPEND_PRECISION),
        impressions=sum(slot.impressions for slot in slots),
        clicks=sum(slot.clicks for slot in slots),
        reach=sum(slot.reach for slot in slots),
    )
    return HourlyProfile(slots=slots, totals=totals)


class HourlyInsightsReconciler:
    """Fetches and reconciles a campaign's hour-of-day profile."""

    def __init__(self, client: GraphAPIClient, row_limit: int = 168 * 3):
        self.client = client
        self.row_limit = row_limit

    async def fetch(self, campaign_id: str, date_range: DateRange) -> HourlyProfile:
        """
        Hourly profile for ``campaign_id`` over ``date_range``.

        Upstream failures are logged and return a zeroed profile; hourly data
        never blocks the rest of a response.
        """
        extended = date_range.extended(days=1)
        params = {
            "fields": "spend,impressions,clicks,reach,date_start",
            "time_range": time_range_param(extended),
            "breakdowns": HOUR_BREAKDOWN,
            "level": "campaign",
            "time_increment": 1,
            "limit": self.row_limit,
        }
        endpoint = f"{campaign_id}/insights"

        try:
            rows = await self.client.get_paginated(endpoint, params, max_rows=self.row_limit)
        except UpstreamError as e:
            logger.error("hourly_insights_failed", campaign_id=campaign_id, **e.log_context())
            return empty_hourly_profile()

        profile = reconcile_hourly_rows(rows, date_range)
        logger.info(
            "hourly_insights_fetched",
            campaign_id=campaign_id,
            data_points=len(rows),
            total_spend=profile.totals.spend,
            total_impressions=profile.totals.impressions,
            date_range=f"{date_range.start_date} to {date_range.end_date}",
        )
        return profile
