from .schemas import (
    MetricTotals,
    AdMetrics,
    DailyStat,
    HourlySlot,
    HourlyProfile,
    LocationEntry,
    LocationInfo,
    ZipLocation,
    Audience,
    Placement,
    Budget,
    Schedule,
    CarouselCard,
    Ad,
    AdSet,
    Campaign,
    CampaignDetails,
    CampaignSummary,
    AccountOverview,
    ErrorResponse,
)

__all__ = [
    "MetricTotals",
    "AdMetrics",
    "DailyStat",
    "HourlySlot",
    "HourlyProfile",
    "LocationEntry",
    "LocationInfo",
    "ZipLocation",
    "Audience",
    "Placement",
    "Budget",
    "Schedule",
    "CarouselCard",
    "Ad",
    "AdSet",
    "Campaign",
    "CampaignDetails",
    "CampaignSummary",
    "AccountOverview",
    "ErrorResponse",
]
