"""
Graph API client used by every insights stage.

One client wraps one ``httpx.AsyncClient`` for the lifetime of a request.
Every call carries the caller's bearer token and its own timeout; failures
surface as ``UpstreamError`` and are never retried here.
"""

import hashlib
import json
import httpx
import structlog
from typing import Any, Dict, Iterable, List, Optional

from campaign_insights.errors import ConfigurationError, UpstreamError
from campaign_insights.services.date_ranges import DateRange

logger = structlog.get_logger(__name__)

# Meta Graph API base URL
META_API_BASE = "https://graph.facebook.com/v24.0"

ENTITY_TIMEOUT = 10.0
LIST_TIMEOUT = 15.0

# Guards against a paging cursor that never terminates
MAX_PAGES = 20


def time_range_param(date_range: DateRange) -> str:
    """JSON-encoded ``{since, until}`` object for the ``time_range`` param."""
    return json.dumps(date_range.to_meta_time_range(), separators=(",", ":"))


def insights_field(date_range: DateRange, fields: Iterable[str]) -> str:
    """Embedded ``insights`` sub-query restricted to a time range."""
    return f"insights.time_range({time_range_param(date_range)}){{{','.join(fields)}}}"


class GraphAPIClient:
    """Async client for the ads platform's Graph API."""

    def __init__(
        self,
        access_token: Optional[str],
        base_url: str = META_API_BASE,
        entity_timeout: float = ENTITY_TIMEOUT,
        list_timeout: float = LIST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not access_token:
            raise ConfigurationError("Graph API access token is required (no environment fallback)")

        # Identifies the credential in cache keys without holding the token itself
        self.token_fingerprint = hashlib.sha256(access_token.encode("utf-8")).hexdigest()
        self.base_url = base_url.rstrip("/")
        self.entity_timeout = entity_timeout
        self.list_timeout = list_timeout
        self._client = httpx.AsyncClient(
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=list_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "GraphAPIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Issue one GET and return the decoded JSON object.

        Args:
            path: Graph path (``"{campaign_id}/insights"``) or an absolute paging URL
            params: Query parameters; the token is sent as a header, not here
            timeout: Seconds before the call is abandoned (defaults to the entity timeout)

        Raises:
            UpstreamError: non-2xx status, transport failure, or an unusable body
        """
        url = self._url(path)
        params = params or {}
        timeout = self.entity_timeout if timeout is None else timeout

        try:
            response = await self._client.get(url, params=params, timeout=timeout)
        except httpx.TimeoutException as e:
            raise UpstreamError(
                f"Timed out after {timeout}s", endpoint=path, params=params
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"Request failed: {e}", endpoint=path, params=params
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if response.is_error:
            raise UpstreamError(
                f"API error: {response.status_code}",
                status=response.status_code,
                body=body,
                endpoint=path,
                params=params,
            )

        if not isinstance(body, dict):
            raise UpstreamError(
                "Malformed response body",
                status=response.status_code,
                body=body,
                endpoint=path,
                params=params,
            )

        if "error" in body:
            raise UpstreamError(
                "API error in response body",
                status=response.status_code,
                body=body,
                endpoint=path,
                params=params,
            )

        return body

    async def get_paginated(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        max_rows: Optional[int] = None,
        max_pages: int = MAX_PAGES,
    ) -> List[Dict[str, Any]]:
        """
        Follow ``paging.next`` cursors and return the concatenated ``data`` rows.

        Stops once ``max_rows`` rows are collected or ``max_pages`` pages were read.
        """
        timeout = self.list_timeout if timeout is None else timeout
        results: List[Dict[str, Any]] = []
        url: Optional[str] = path
        page_params = dict(params or {})
        pages = 0

        while url and pages < max_pages:
            data = await self.get(url, page_params, timeout=timeout)
            rows = data.get("data") or []
            if not isinstance(rows, list):
                raise UpstreamError(
                    "Expected a data list", body=data, endpoint=path, params=params
                )
            results.extend(rows)
            pages += 1

            if max_rows is not None and len(results) >= max_rows:
                results = results[:max_rows]
                break

            url = (data.get("paging") or {}).get("next")
            page_params = {}  # next URL already contains all params

        logger.debug("graph_paginated_read", endpoint=path, pages=pages, rows=len(results))
        return results
