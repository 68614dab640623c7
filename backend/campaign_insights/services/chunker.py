"""
Chunked insights reads.

The insights endpoint silently truncates long ranges instead of paginating
reliably, so ranges longer than the chunk limit are fetched window by window.
"""

from typing import Any, Dict, List, Optional

import structlog

from campaign_insights.services.date_ranges import DateRange, split_date_range
from campaign_insights.services.graph_client import GraphAPIClient, time_range_param

logger = structlog.get_logger(__name__)


async def fetch_chunked(
    client: GraphAPIClient,
    path: str,
    params: Dict[str, Any],
    date_range: DateRange,
    max_days: int = 14,
    timeout: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """
    Fetch insight rows for ``date_range`` in windows of at most ``max_days``.

    Windows are fetched one after another and their rows concatenated in
    chronological order. A failure in any window propagates.
    """
    windows = split_date_range(date_range, max_days)
    if len(windows) > 1:
        logger.info(
            "chunked_insights_request",
            endpoint=path,
            windows=len(windows),
            date_range=f"{date_range.start_date} to {date_range.end_date}",
        )

    rows: List[Dict[str, Any]] = []
    for window in windows:
        window_params = {**params, "time_range": time_range_param(window)}
        rows.extend(await client.get_paginated(path, window_params, timeout=timeout))

    return rows
