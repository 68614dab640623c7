from pydantic import BaseModel, ConfigDict, Field
from typing import Annotated, List, Literal, Optional, Union


class MetricTotals(BaseModel):
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    reach: int = 0


class AdMetrics(MetricTotals):
    ctr: float = 0.0  # clicks / impressions as percentage


class DailyStat(MetricTotals):
    date: str  # YYYYMMDD


class HourlySlot(MetricTotals):
    hour: int = Field(ge=0, le=23)


class HourlyProfile(BaseModel):
    slots: List[HourlySlot]
    totals: MetricTotals


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


class _Location(BaseModel):
    name: Optional[str] = None
    display: str


class CountryLocation(_Location):
    type: Literal["country"] = "country"
    country_code: str


class RegionLocation(_Location):
    type: Literal["region"] = "region"
    key: Optional[str] = None
    country: Optional[str] = None


class CityLocation(_Location):
    type: Literal["city"] = "city"
    key: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    radius: float = 0
    distance_unit: str = "km"
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class CustomLocation(_Location):
    type: Literal["custom_location"] = "custom_location"
    address: Optional[str] = None
    radius: float = 0
    distance_unit: str = "km"
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class PlaceLocation(_Location):
    type: Literal["place"] = "place"
    id: Optional[str] = None
    radius: float = 0
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ZipLocation(_Location):
    type: Literal["zip"] = "zip"
    zip_code: str
    key: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None


class GeoMarketLocation(_Location):
    type: Literal["geo_market"] = "geo_market"
    key: Optional[str] = None
    market_type: Optional[str] = None


class ElectoralDistrictLocation(_Location):
    type: Literal["electoral_district"] = "electoral_district"
    key: Optional[str] = None
    country: Optional[str] = None


LocationEntry = Annotated[
    Union[
        CountryLocation,
        RegionLocation,
        CityLocation,
        CustomLocation,
        PlaceLocation,
        ZipLocation,
        GeoMarketLocation,
        ElectoralDistrictLocation,
    ],
    Field(discriminator="type"),
]


class LocationInfo(BaseModel):
    formatted: str
    locations: List[LocationEntry] = Field(default_factory=list)
    excluded: List[LocationEntry] = Field(default_factory=list)
    zip_codes: List[ZipLocation] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Ad set configuration
# ---------------------------------------------------------------------------


class Audience(BaseModel):
    location: str = "worldwide"
    locations: List[LocationEntry] = Field(default_factory=list)
    excluded_locations: List[LocationEntry] = Field(default_factory=list)
    zip_codes: List[ZipLocation] = Field(default_factory=list)
    age_range: str = "all"
    gender: Literal["all", "male", "female"] = "all"
    interests: List[str] = Field(default_factory=list)
    behaviors: List[str] = Field(default_factory=list)
    demographics: List[str] = Field(default_factory=list)
    custom_audiences: List[str] = Field(default_factory=list)
    lookalike_audiences: List[str] = Field(default_factory=list)
    excluded_interests: List[str] = Field(default_factory=list)
    excluded_behaviors: List[str] = Field(default_factory=list)
    excluded_custom_audiences: List[str] = Field(default_factory=list)
    is_advantage_audience: bool = False
    has_targeting_expansion: bool = False


class Placement(BaseModel):
    type: Literal["manual", "automatic"] = "automatic"
    platforms: List[str] = Field(default_factory=list)
    positions: List[str] = Field(default_factory=list)
    devices: List[str] = Field(default_factory=list)


class Budget(BaseModel):
    type: Literal["daily", "lifetime", "none"] = "none"
    amount: float = 0.0  # major currency unit


class Schedule(BaseModel):
    start_date: str = ""
    end_date: str = ""


# ---------------------------------------------------------------------------
# Hierarchy
# ---------------------------------------------------------------------------


class CarouselCard(BaseModel):
    headline: str = ""
    description: str = ""
    image_url: str = ""
    link_url: str = ""
    utm_content: str = ""
    actual_clicks: int = 0
    click_source: Literal["card_breakdown", "destination_url", "estimated"] = "estimated"


class Ad(BaseModel):
    id: str
    name: str
    adset_id: str
    status: str
    format: Literal["image", "video", "carousel"]
    media_url: str = ""
    thumbnail_url: str = ""
    video_id: Optional[str] = None
    text: str = ""
    headline: str = ""
    cta: str = ""
    destination: str = ""
    carousel_cards: Optional[List[CarouselCard]] = None
    metrics: AdMetrics = Field(default_factory=AdMetrics)
    daily_stats: List[DailyStat] = Field(default_factory=list, alias="dailyStats")

    model_config = ConfigDict(populate_by_name=True)


class AdSet(BaseModel):
    id: str
    name: str
    status: str
    audience: Audience = Field(default_factory=Audience)
    placements: Placement = Field(default_factory=Placement)
    budget: Budget = Field(default_factory=Budget)
    schedule: Schedule = Field(default_factory=Schedule)
    metrics: MetricTotals = Field(default_factory=MetricTotals)
    ads: List[Ad] = Field(default_factory=list)


class Campaign(BaseModel):
    id: str
    name: str
    objective: str = ""
    status: str = ""
    metrics: MetricTotals = Field(default_factory=MetricTotals)
    ad_sets: List[AdSet] = Field(default_factory=list)


class CampaignDetails(BaseModel):
    campaign: Campaign
    daily_stats: List[DailyStat] = Field(default_factory=list, alias="dailyStats")
    hourly_stats: List[HourlySlot] = Field(default_factory=list, alias="hourlyStats")
    hourly_totals: MetricTotals = Field(default_factory=MetricTotals, alias="hourlyTotals")

    model_config = ConfigDict(populate_by_name=True)


class CampaignSummary(BaseModel):
    id: str
    name: str
    objective: str = ""
    status: str = ""
    metrics: MetricTotals = Field(default_factory=MetricTotals)


class AccountOverview(BaseModel):
    account_id: str
    totals: MetricTotals = Field(default_factory=MetricTotals)
    daily_data: List[DailyStat] = Field(default_factory=list, alias="dailyData")
    campaigns: List[CampaignSummary] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
    upstream_status: Optional[int] = None
