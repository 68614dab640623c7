"""
Typed view of the Graph API payloads the engine reads.

Every field the platform may omit is optional here; downstream code works on
these models (and on ``schemas``), never on raw JSON. Unknown fields are
ignored so new API versions do not break parsing.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GraphModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------


class ActionValue(GraphModel):
    action_type: str = ""
    value: float = 0.0
    action_carousel_card_id: Optional[str] = None
    action_destination: Optional[str] = None


class InsightRow(GraphModel):
    date_start: Optional[str] = None
    date_stop: Optional[str] = None
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    reach: int = 0
    hourly_stats_aggregated_by_audience_time_zone: Optional[str] = None
    action_carousel_card_id: Optional[str] = None
    action_destination: Optional[str] = None
    actions: List[ActionValue] = Field(default_factory=list)


class InsightsEdge(GraphModel):
    data: List[InsightRow] = Field(default_factory=list)

    def first(self) -> InsightRow:
        return self.data[0] if self.data else InsightRow()


# ---------------------------------------------------------------------------
# Targeting
# ---------------------------------------------------------------------------


class NamedTarget(GraphModel):
    id: Optional[str] = None
    name: Optional[str] = None


class LookalikeTarget(NamedTarget):
    ratio: Optional[float] = None
    pixel_id: Optional[str] = None
    page_id: Optional[str] = None


class GeoRegion(GraphModel):
    key: Optional[str] = None
    name: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    country_name: Optional[str] = None


class GeoCity(GraphModel):
    key: Optional[str] = None
    name: Optional[str] = None
    region: Optional[str] = None
    region_id: Optional[str] = None
    region_name: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    country_name: Optional[str] = None
    radius: Optional[float] = None
    distance_unit: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class GeoCustomLocation(GraphModel):
    address_string: Optional[str] = None
    name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius: Optional[float] = None
    distance_unit: Optional[str] = None
    country: Optional[str] = None


class GeoPlace(GraphModel):
    key: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius: Optional[float] = None
    distance_unit: Optional[str] = None


class GeoZip(GraphModel):
    key: Optional[str] = None
    name: Optional[str] = None
    primary_city: Optional[str] = None
    primary_city_id: Optional[str] = None
    region: Optional[str] = None
    region_id: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None

    @property
    def code(self) -> str:
        """The postal code itself (``US:90210`` -> ``90210``)."""
        if self.key and ":" in self.key:
            return self.key.split(":", 1)[1]
        return self.name or self.key or ""

    @property
    def lookup_key(self) -> str:
        if self.key:
            return self.key
        country = self.country or self.country_code or "US"
        return f"{country}:{self.code}"

    @property
    def is_resolved(self) -> bool:
        return bool(self.primary_city and self.region)


class GeoMarket(GraphModel):
    key: Optional[str] = None
    name: Optional[str] = None
    market_type: Optional[str] = None


class ElectoralDistrict(GraphModel):
    key: Optional[str] = None
    name: Optional[str] = None
    country: Optional[str] = None


class GeoLocations(GraphModel):
    countries: List[str] = Field(default_factory=list)
    regions: List[GeoRegion] = Field(default_factory=list)
    cities: List[GeoCity] = Field(default_factory=list)
    custom_locations: List[GeoCustomLocation] = Field(default_factory=list)
    places: List[GeoPlace] = Field(default_factory=list)
    zips: List[GeoZip] = Field(default_factory=list)
    geo_markets: List[GeoMarket] = Field(default_factory=list)
    electoral_districts: List[ElectoralDistrict] = Field(default_factory=list)
    location_types: List[str] = Field(default_factory=list)


class FlexibleSpecGroup(GraphModel):
    interests: List[NamedTarget] = Field(default_factory=list)
    behaviors: List[NamedTarget] = Field(default_factory=list)
    demographics: List[NamedTarget] = Field(default_factory=list)
    custom_audiences: List[NamedTarget] = Field(default_factory=list)
    user_adclusters: List[NamedTarget] = Field(default_factory=list)


class ExclusionGroup(GraphModel):
    interests: List[NamedTarget] = Field(default_factory=list)
    behaviors: List[NamedTarget] = Field(default_factory=list)
    custom_audiences: List[NamedTarget] = Field(default_factory=list)


class Targeting(GraphModel):
    geo_locations: Optional[GeoLocations] = None
    excluded_geo_locations: Optional[GeoLocations] = None
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    genders: List[int] = Field(default_factory=list)

    interests: List[NamedTarget] = Field(default_factory=list)
    behaviors: List[NamedTarget] = Field(default_factory=list)
    custom_audiences: List[NamedTarget] = Field(default_factory=list)
    lookalike_audiences: List[LookalikeTarget] = Field(default_factory=list)
    flexible_spec: List[FlexibleSpecGroup] = Field(default_factory=list)
    exclusions: Optional[ExclusionGroup] = None
    excluded_custom_audiences: List[NamedTarget] = Field(default_factory=list)
    excluded_interests: List[NamedTarget] = Field(default_factory=list)
    excluded_behaviors: List[NamedTarget] = Field(default_factory=list)

    publisher_platforms: List[str] = Field(default_factory=list)
    facebook_positions: List[str] = Field(default_factory=list)
    instagram_positions: List[str] = Field(default_factory=list)
    audience_network_positions: List[str] = Field(default_factory=list)
    messenger_positions: List[str] = Field(default_factory=list)
    device_platforms: List[str] = Field(default_factory=list)

    # Advantage+ / expansion flags, renamed across API versions
    targeting_automation: Optional[Dict[str, Any]] = None
    use_accelerate_targeting: Optional[bool] = None
    targeting_optimization: Optional[str] = None
    targeting_expansion: Optional[str] = None
    targeting_expansion_level: Optional[str] = None
    targeting_relaxation_types: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class GraphCampaign(GraphModel):
    id: Optional[str] = None
    name: str = ""
    objective: str = ""
    status: str = ""
    insights: InsightsEdge = Field(default_factory=InsightsEdge)


class GraphAdSet(GraphModel):
    id: str
    name: str = ""
    status: str = ""
    effective_status: Optional[str] = None
    campaign_id: Optional[str] = None
    targeting: Optional[Targeting] = None
    daily_budget: Optional[str] = None
    lifetime_budget: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    publisher_platforms: List[str] = Field(default_factory=list)
    platform_positions: List[str] = Field(default_factory=list)
    device_platforms: List[str] = Field(default_factory=list)
    bid_strategy: Optional[str] = None
    billing_event: Optional[str] = None
    optimization_goal: Optional[str] = None
    insights: InsightsEdge = Field(default_factory=InsightsEdge)


class ChildAttachment(GraphModel):
    name: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    picture: Optional[str] = None
    link: Optional[str] = None
    url: Optional[str] = None


class LinkData(GraphModel):
    link: Optional[str] = None
    child_attachments: List[ChildAttachment] = Field(default_factory=list)


class ObjectStorySpec(GraphModel):
    link_data: Optional[LinkData] = None


class GraphCreative(GraphModel):
    id: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    video_id: Optional[str] = None
    call_to_action_type: Optional[str] = None
    object_story_spec: Optional[ObjectStorySpec] = None
    object_story_id: Optional[str] = None
    object_url: Optional[str] = None
    object_type: Optional[str] = None
    link_url: Optional[str] = None

    @property
    def child_attachments(self) -> List[ChildAttachment]:
        spec = self.object_story_spec
        if spec and spec.link_data:
            return spec.link_data.child_attachments
        return []


class CreativeEdge(GraphModel):
    data: List[GraphCreative] = Field(default_factory=list)


class GraphAd(GraphModel):
    id: str
    name: str = ""
    status: str = ""
    adset_id: Optional[str] = None
    creative: GraphCreative = Field(default_factory=GraphCreative)
    adcreatives: CreativeEdge = Field(default_factory=CreativeEdge)
    insights: InsightsEdge = Field(default_factory=InsightsEdge)


class ZipDetails(GraphModel):
    """One entry of the ``adgeolocationmeta`` postal-code lookup."""
    key: Optional[str] = None
    name: Optional[str] = None
    primary_city: Optional[str] = None
    region: Optional[str] = None
    country_code: Optional[str] = None
