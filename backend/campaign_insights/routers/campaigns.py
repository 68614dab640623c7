from fastapi import APIRouter, Depends, Header, Query, Request
from typing import Optional, Tuple
import httpx
import structlog

from campaign_insights.config import Settings
from campaign_insights.errors import ConfigurationError, ValidationError
from campaign_insights.models.schemas import AccountOverview, CampaignDetails
from campaign_insights.services.account_overview import AccountOverviewService
from campaign_insights.services.brands import BrandConnectionStore
from campaign_insights.services.cache import TTLCache
from campaign_insights.services.campaign_details import CampaignDetailsService
from campaign_insights.services.date_ranges import parse_request_range
from campaign_insights.services.graph_client import GraphAPIClient

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/meta", tags=["meta"])


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> TTLCache:
    return request.app.state.cache


def get_brand_store(request: Request) -> BrandConnectionStore:
    return request.app.state.brand_store


def get_transport(request: Request) -> Optional[httpx.AsyncBaseTransport]:
    """Upstream transport override (tests mount an ``httpx.MockTransport`` here)."""
    return getattr(request.app.state, "graph_transport", None)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def resolve_credentials(
    brand_id: Optional[str],
    meta_account_id: Optional[str],
    authorization: Optional[str],
    store: BrandConnectionStore,
) -> Tuple[str, Optional[str]]:
    """
    Access token and ad account id for a request.

    A brand's stored connection wins; without a brand the caller's own
    bearer token is used.
    """
    if brand_id:
        connection = await store.get_connection(brand_id)
        if connection is None:
            raise ConfigurationError(f"No ads connection configured for brand {brand_id}")
        return connection.access_token, meta_account_id or connection.ad_account_id

    token = _bearer_token(authorization)
    if not token:
        raise ConfigurationError("Missing access token: pass brandId or an Authorization bearer token")
    return token, meta_account_id


def _client(token: str, settings: Settings, transport: Optional[httpx.AsyncBaseTransport]) -> GraphAPIClient:
    return GraphAPIClient(
        token,
        base_url=settings.graph_base_url,
        entity_timeout=settings.entity_timeout_seconds,
        list_timeout=settings.list_timeout_seconds,
        transport=transport,
    )


@router.get("/campaigns/{campaign_id}", response_model=CampaignDetails)
async def get_campaign_details(
    campaign_id: str,
    brand_id: Optional[str] = Query(None, alias="brandId"),
    meta_account_id: Optional[str] = Query(None, alias="metaAccountId"),
    from_date: Optional[str] = Query(None, alias="from", description="Start date YYYY-MM-DD"),
    to_date: Optional[str] = Query(None, alias="to", description="End date YYYY-MM-DD"),
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings),
    cache: TTLCache = Depends(get_cache),
    store: BrandConnectionStore = Depends(get_brand_store),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
):
    """Campaign -> ad sets -> ads tree with daily and hourly series."""
    date_range = parse_request_range(from_date, to_date)
    token, _ = await resolve_credentials(brand_id, meta_account_id, authorization, store)

    logger.info(
        "campaign_details_requested",
        campaign_id=campaign_id,
        brand_id=brand_id,
        date_range=f"{date_range.start_date} to {date_range.end_date}",
    )

    async with _client(token, settings, transport) as client:
        service = CampaignDetailsService(client, cache=cache, settings=settings)
        return await service.get_campaign_details(campaign_id, date_range)


@router.get("/overview", response_model=AccountOverview)
async def get_account_overview(
    brand_id: Optional[str] = Query(None, alias="brandId"),
    meta_account_id: Optional[str] = Query(None, alias="metaAccountId"),
    from_date: Optional[str] = Query(None, alias="from", description="Start date YYYY-MM-DD"),
    to_date: Optional[str] = Query(None, alias="to", description="End date YYYY-MM-DD"),
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings),
    cache: TTLCache = Depends(get_cache),
    store: BrandConnectionStore = Depends(get_brand_store),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
):
    """Account-level daily insights, totals and campaigns with spend."""
    date_range = parse_request_range(from_date, to_date)
    token, account_id = await resolve_credentials(brand_id, meta_account_id, authorization, store)
    if not account_id:
        raise ValidationError("metaAccountId is required when the brand has no ad account")

    async with _client(token, settings, transport) as client:
        service = AccountOverviewService(client, cache=cache, settings=settings)
        return await service.get_overview(account_id, date_range)
