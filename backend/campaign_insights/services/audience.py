"""
Audience and location formatting for ad set targeting.

Turns a targeting spec into structured ``LocationEntry`` values plus an Ads
Manager style summary string, resolving postal-code city/state names through
batched lookups when the targeting spec does not carry them.
"""

import asyncio
import json
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog
from pydantic import ValidationError as PydanticValidationError

from campaign_insights.errors import UpstreamError
from campaign_insights.models.graph import (
    GeoLocations,
    GeoZip,
    LookalikeTarget,
    NamedTarget,
    Targeting,
    ZipDetails,
)
from campaign_insights.models.schemas import (
    Audience,
    CityLocation,
    CountryLocation,
    CustomLocation,
    ElectoralDistrictLocation,
    GeoMarketLocation,
    LocationInfo,
    PlaceLocation,
    RegionLocation,
    ZipLocation,
)
from campaign_insights.services.cache import TTLCache
from campaign_insights.services.graph_client import GraphAPIClient
from campaign_insights.services.normalize import age_range, gender

logger = structlog.get_logger(__name__)

WORLDWIDE = "worldwide"
ZIP_BATCH_SIZE = 50

# Advantage+ audience flags, newest API version first. The platform renamed
# this switch several times; any alias matching one of its values counts.
ADVANTAGE_AUDIENCE_ALIASES: Tuple[Tuple[str, Tuple[Any, ...]], ...] = (
    ("targeting_automation.advantage_audience", (1, "1")),  # v17+
    ("use_accelerate_targeting", (True,)),                    # legacy
    ("targeting_optimization", ("expansion_all",)),
    ("targeting_expansion", ("expansion_all",)),
    ("targeting_expansion_level", ("maximum",)),
)

# Detailed-targeting expansion flags, newest API version first.
TARGETING_EXPANSION_ALIASES: Tuple[str, ...] = (
    "targeting_relaxation_types",
    "targeting_expansion",
    "targeting_optimization",
)

EXPANSION_OFF_VALUES = ("", "none", "expansion_none")


def _num(value: Optional[float]) -> str:
    """10.0 -> "10", 2.5 -> "2.5"."""
    if value is None:
        return "0"
    return str(int(value)) if float(value).is_integer() else str(value)


def _resolve_alias(targeting: Targeting, path: str) -> Any:
    head, _, rest = path.partition(".")
    value = getattr(targeting, head, None)
    if rest:
        return value.get(rest) if isinstance(value, dict) else None
    return value


def detect_advantage_audience(targeting: Targeting) -> bool:
    for path, on_values in ADVANTAGE_AUDIENCE_ALIASES:
        value = _resolve_alias(targeting, path)
        if value is not None and value in on_values:
            return True
    return False


def detect_targeting_expansion(targeting: Targeting) -> bool:
    for path in TARGETING_EXPANSION_ALIASES:
        value = _resolve_alias(targeting, path)
        if value is None:
            continue
        if isinstance(value, dict):
            if any(value.values()):
                return True
        elif isinstance(value, bool):
            if value:
                return True
        elif str(value).lower() not in EXPANSION_OFF_VALUES:
            return True
    return False


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


def _zip_location(entry: GeoZip, details: Optional[ZipDetails]) -> ZipLocation:
    city = entry.primary_city or (details.primary_city if details else None)
    region = entry.region or (details.region if details else None)
    code = entry.code
    return ZipLocation(
        name=code,
        zip_code=code,
        key=entry.lookup_key,
        city=city,
        region=region,
        country=entry.country or entry.country_code or (details.country_code if details else None),
        display=f"{city} ({code})" if city else f"({code})",
    )


def format_zip_groups(zips: Sequence[ZipLocation]) -> List[str]:
    """
    Group postal codes by state, then city, Ads Manager style.

    ``["Austin (78701, 78702), Round Rock (78664) Texas", "(90210)"]``
    Codes with neither city nor state render as ``"(zip)"``.
    """
    by_state: Dict[str, Dict[str, List[str]]] = {}
    unresolved: List[str] = []

    for entry in zips:
        if not entry.city and not entry.region:
            unresolved.append(f"({entry.zip_code})")
            continue
        cities = by_state.setdefault(entry.region or "", {})
        cities.setdefault(entry.city or "", []).append(entry.zip_code)

    groups = []
    for state, cities in by_state.items():
        parts = []
        for city, codes in cities.items():
            codes_str = f"({', '.join(codes)})"
            parts.append(f"{city} {codes_str}" if city else codes_str)
        group = ", ".join(parts)
        groups.append(f"{group} {state}" if state else group)

    return groups + unresolved


def location_entries(
    geo: GeoLocations, zip_details: Optional[Dict[str, ZipDetails]] = None
) -> Tuple[List[Any], List[ZipLocation]]:
    """Structured entries for every geo sub-collection, plus the zip subset."""
    zip_details = zip_details or {}
    entries: List[Any] = []

    for country in geo.countries:
        entries.append(CountryLocation(name=country, country_code=country, display=country))

    for region in geo.regions:
        name = region.name or region.key or ""
        country = region.country_name or region.country_code or region.country
        entries.append(RegionLocation(
            name=name,
            key=region.key,
            country=country,
            display=f"{name}, {region.country_name}" if region.country_name else name,
        ))

    for city in geo.cities:
        region = city.region_name or city.region or city.region_id
        unit = city.distance_unit or "km"
        display = city.name or city.key or ""
        if region:
            display += f", {region}"
        if city.radius:
            display += f" (+{_num(city.radius)} {unit})"
        entries.append(CityLocation(
            name=city.name,
            key=city.key,
            region=region,
            country=city.country_name or city.country_code or city.country,
            radius=city.radius or 0,
            distance_unit=unit,
            latitude=city.latitude,
            longitude=city.longitude,
            display=display,
        ))

    for loc in geo.custom_locations:
        unit = loc.distance_unit or "km"
        radius = f"(+{_num(loc.radius)} {unit})"
        if loc.address_string:
            name = loc.address_string
            display = f"{loc.address_string} {radius}"
        else:
            name = loc.name or f"Location at {loc.latitude},{loc.longitude}"
            display = f"Custom location {radius}"
        entries.append(CustomLocation(
            name=name,
            address=loc.address_string,
            radius=loc.radius or 0,
            distance_unit=unit,
            latitude=loc.latitude,
            longitude=loc.longitude,
            display=display,
        ))

    for place in geo.places:
        place_id = place.id or place.key
        entries.append(PlaceLocation(
            name=place.name,
            id=place_id,
            radius=place.radius or 0,
            latitude=place.latitude,
            longitude=place.longitude,
            display=place.name or f"Place ID: {place_id}",
        ))

    zips = [_zip_location(entry, zip_details.get(entry.lookup_key)) for entry in geo.zips]
    entries.extend(zips)

    for market in geo.geo_markets:
        entries.append(GeoMarketLocation(
            name=market.name,
            key=market.key,
            market_type=market.market_type,
            display=market.name or market.key or "",
        ))

    for district in geo.electoral_districts:
        entries.append(ElectoralDistrictLocation(
            name=district.name,
            key=district.key,
            country=district.country,
            display=district.name or district.key or "",
        ))

    return entries, zips


def build_location_info(
    geo: Optional[GeoLocations],
    zip_details: Optional[Dict[str, ZipDetails]] = None,
    excluded_geo: Optional[GeoLocations] = None,
) -> LocationInfo:
    """
    Location summary for one targeting spec.

    ``formatted`` joins every entry's display string, with postal codes
    collapsed into state/city groups. Absent or empty geo targeting is
    ``"worldwide"``.
    """
    excluded: List[Any] = []
    if excluded_geo is not None:
        excluded, _ = location_entries(excluded_geo, zip_details)

    if geo is None:
        return LocationInfo(formatted=WORLDWIDE, excluded=excluded)

    entries, zips = location_entries(geo, zip_details)

    parts: List[str] = []
    zips_added = False
    for entry in entries:
        if entry.type == "zip":
            if not zips_added:
                parts.extend(format_zip_groups(zips))
                zips_added = True
            continue
        if entry.display:
            parts.append(entry.display)

    return LocationInfo(
        formatted=", ".join(parts) or WORLDWIDE,
        locations=entries,
        excluded=excluded,
        zip_codes=zips,
    )


class ZipCodeResolver:
    """
    Resolves postal-code city/state names via the geolocation lookup.

    Lookups are batched, batches run concurrently, and results are cached
    in the injected process-scoped cache. A failed batch leaves its codes
    unresolved.
    """

    def __init__(
        self,
        client: GraphAPIClient,
        cache: Optional[TTLCache] = None,
        batch_size: int = ZIP_BATCH_SIZE,
    ):
        self.client = client
        self.cache = cache if cache is not None else TTLCache()
        self.batch_size = batch_size

    @staticmethod
    def _cache_key(zip_key: str) -> Tuple[str, str]:
        return ("zip", zip_key)

    async def _lookup_batch(self, keys: List[str]) -> Dict[str, ZipDetails]:
        try:
            data = await self.client.get(
                "search",
                {"type": "adgeolocationmeta", "zips": json.dumps(keys)},
                timeout=self.client.entity_timeout,
            )
        except UpstreamError as e:
            logger.warning("zip_lookup_batch_failed", batch_size=len(keys), **e.log_context())
            return {}

        payload = data.get("data")
        raw = payload.get("zips") or {} if isinstance(payload, dict) else {}
        if not isinstance(raw, dict):
            logger.warning("zip_lookup_malformed", batch_size=len(keys), zips=raw)
            return {}

        resolved = {}
        for key, value in raw.items():
            try:
                resolved[key] = ZipDetails.model_validate(value)
            except PydanticValidationError:
                logger.warning("zip_lookup_entry_unparseable", key=key)
        return resolved

    async def resolve(self, zips: Iterable[GeoZip]) -> Dict[str, ZipDetails]:
        """Details for every zip lacking a resolved city/state name."""
        details: Dict[str, ZipDetails] = {}
        pending: List[str] = []

        for entry in zips:
            if entry.is_resolved:
                continue
            key = entry.lookup_key
            cached = self.cache.get(self._cache_key(key))
            if cached is not None:
                details[key] = cached
            elif key not in pending:
                pending.append(key)

        if not pending:
            return details

        batches = [
            pending[i:i + self.batch_size]
            for i in range(0, len(pending), self.batch_size)
        ]
        results = await asyncio.gather(*(self._lookup_batch(batch) for batch in batches))

        for batch_result in results:
            for key, value in batch_result.items():
                self.cache.set(self._cache_key(key), value)
                details[key] = value

        logger.info(
            "zip_codes_resolved",
            requested=len(pending),
            resolved=sum(1 for key in pending if key in details),
            batches=len(batches),
        )
        return details


# ---------------------------------------------------------------------------
# Audience lists
# ---------------------------------------------------------------------------


def _names(targets: Iterable[NamedTarget]) -> List[str]:
    return [target.name for target in targets if target.name]


def _names_or_ids(targets: Iterable[NamedTarget], label: str) -> List[str]:
    result = []
    for target in targets:
        if target.name:
            result.append(target.name)
        elif target.id:
            result.append(f"{label} ID: {target.id}")
    return result


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def lookalike_name(audience: LookalikeTarget) -> str:
    if audience.name:
        return audience.name
    if audience.ratio:
        percent = f"Lookalike {audience.ratio * 100:.0f}%"
        if audience.pixel_id:
            return f"{percent} - Pixel ID: {audience.pixel_id}"
        if audience.page_id:
            return f"{percent} - Page ID: {audience.page_id}"
        return percent
    return "Unnamed Lookalike Audience"


def extract_audience_lists(targeting: Targeting) -> Dict[str, List[str]]:
    """Interest, behavior, demographic and audience names, direct and flexible."""
    interests: List[str] = []
    behaviors: List[str] = []
    demographics: List[str] = []
    custom_audiences: List[str] = []

    for group in targeting.flexible_spec:
        interests += _names(group.interests)
        behaviors += _names(group.behaviors)
        demographics += _names(group.demographics)
        custom_audiences += _names(group.custom_audiences)

    interests += _names(targeting.interests)
    behaviors += _names(targeting.behaviors)
    custom_audiences += _names(targeting.custom_audiences)

    excluded_interests = _names_or_ids(targeting.excluded_interests, "Interest")
    excluded_behaviors = _names_or_ids(targeting.excluded_behaviors, "Behavior")
    excluded_custom_audiences = _names_or_ids(targeting.excluded_custom_audiences, "Custom Audience")
    if targeting.exclusions:
        excluded_interests += _names(targeting.exclusions.interests)
        excluded_behaviors += _names(targeting.exclusions.behaviors)
        excluded_custom_audiences += _names(targeting.exclusions.custom_audiences)

    return {
        "interests": _unique(interests),
        "behaviors": _unique(behaviors),
        "demographics": _unique(demographics),
        "custom_audiences": _unique(custom_audiences),
        "lookalike_audiences": [lookalike_name(a) for a in targeting.lookalike_audiences],
        "excluded_interests": _unique(excluded_interests),
        "excluded_behaviors": _unique(excluded_behaviors),
        "excluded_custom_audiences": _unique(excluded_custom_audiences),
    }


class AudienceFormatter:
    """Builds the ``Audience`` block of an ad set."""

    def __init__(self, zip_resolver: Optional[ZipCodeResolver] = None):
        self.zip_resolver = zip_resolver

    async def build_audience(self, targeting: Targeting) -> Audience:
        geo = targeting.geo_locations
        excluded_geo = targeting.excluded_geo_locations

        zips = []
        if geo is not None:
            zips += geo.zips
        if excluded_geo is not None:
            zips += excluded_geo.zips

        zip_details: Dict[str, ZipDetails] = {}
        if zips and self.zip_resolver is not None:
            zip_details = await self.zip_resolver.resolve(zips)

        location_info = build_location_info(geo, zip_details, excluded_geo)

        return Audience(
            location=location_info.formatted,
            locations=location_info.locations,
            excluded_locations=location_info.excluded,
            zip_codes=location_info.zip_codes,
            age_range=age_range(targeting),
            gender=gender(targeting),
            is_advantage_audience=detect_advantage_audience(targeting),
            has_targeting_expansion=detect_targeting_expansion(targeting),
            **extract_audience_lists(targeting),
        )
