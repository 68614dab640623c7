import pytest

from campaign_insights.errors import UpstreamError
from campaign_insights.models.schemas import DailyStat, MetricTotals
from campaign_insights.services.campaign_details import (
    CampaignDetailsService,
    apportion_daily_stats,
)
from campaign_insights.services.date_ranges import DateRange
from campaign_insights.services.entity_fetcher import EntityFetcher, group_ads_by_ad_set
from campaign_insights.services.hourly import HOUR_BREAKDOWN

from conftest import graph_error, insights, make_client

RANGE = DateRange("2024-03-01", "2024-03-02")

CAMPAIGN = {
    "id": "camp-1",
    "name": "Spring Launch",
    "objective": "OUTCOME_TRAFFIC",
    "status": "ACTIVE",
    "insights": insights(spend="100.00", impressions=10000, clicks=200, reach=5000),
}

DAILY_ROWS = [
    {"date_start": "2024-03-01", "spend": "60.00", "impressions": "6000", "clicks": "120", "reach": "3000"},
    {"date_start": "2024-03-02", "spend": "40.00", "impressions": "4000", "clicks": "80", "reach": "2000"},
]

HOURLY_ROWS = [
    {"date_start": "2024-03-01", HOUR_BREAKDOWN: "09:00:00 - 09:59:59",
     "spend": "10.5", "impressions": "900", "clicks": "20", "reach": "700"},
]

AD_SETS = [
    {
        "id": "set-A",
        "name": "Texas homeowners",
        "status": "ACTIVE",
        "daily_budget": "2500",
        "start_time": "2024-03-01T05:00:00+0000",
        "publisher_platforms": ["facebook", "instagram"],
        "platform_positions": ["feed", "story"],
        "targeting": {"geo_locations": {"regions": [{"key": "4082", "name": "Texas"}]}, "genders": [1]},
        "insights": insights(spend="70.00", impressions=7000, clicks=150, reach=3500),
    },
    {
        "id": "set-B",
        "name": "Broad",
        "status": "PAUSED",
        "lifetime_budget": "100000",
        "targeting": {"age_min": 18, "age_max": 65},
        "insights": insights(spend="30.00", impressions=3000, clicks=50, reach=1500),
    },
]


def ad(ad_id, ad_set_id, spend="10.00", impressions=1000, clicks=20, reach=500):
    return {
        "id": ad_id,
        "name": f"Ad {ad_id}",
        "status": "ACTIVE",
        "adset_id": ad_set_id,
        "creative": {"id": f"cr-{ad_id}", "title": "Build your dream home", "body": "Tour today",
                     "image_url": f"https://cdn.test/{ad_id}.jpg"},
        "insights": insights(spend=spend, impressions=impressions, clicks=clicks, reach=reach),
    }


ADS = [
    ad("ad-1", "set-A", spend="50.00", impressions=5000, clicks=100, reach=2500),
    ad("ad-2", "set-A"),
    ad("ad-3", "set-A"),
    ad("ad-4", "set-B"),
    ad("ad-5", "set-B"),
]


def campaign_insights(request):
    if request.url.params.get("breakdowns") == HOUR_BREAKDOWN:
        return {"data": HOURLY_ROWS}
    return {"data": DAILY_ROWS}


@pytest.fixture
def campaign_graph(graph):
    graph.add("camp-1", CAMPAIGN)
    graph.add("camp-1/insights", campaign_insights)
    graph.add("camp-1/adsets", {"data": AD_SETS})
    graph.add("camp-1/ads", {"data": ADS})
    graph.add("set-B", {"id": "set-B", "targeting": {"geo_locations": {"countries": ["US"]}, "age_min": 18, "age_max": 65}})
    return graph


def test_group_ads_by_ad_set_keeps_upstream_order():
    grouped = group_ads_by_ad_set(ADS + [{"id": "orphan"}])
    assert [a["id"] for a in grouped["set-A"]] == ["ad-1", "ad-2", "ad-3"]
    assert [a["id"] for a in grouped["set-B"]] == ["ad-4", "ad-5"]
    assert "orphan" not in str(grouped)


@pytest.mark.asyncio
async def test_ads_fetched_in_one_listing_and_grouped(campaign_graph, settings):
    async with make_client(campaign_graph) as client:
        details = await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)

    ad_sets = details.campaign.ad_sets
    assert [s.id for s in ad_sets] == ["set-A", "set-B"]
    assert len(ad_sets[0].ads) == 3
    assert len(ad_sets[1].ads) == 2
    assert len(campaign_graph.calls_to("camp-1/ads")) == 1
    assert all(a.adset_id == s.id for s in ad_sets for a in s.ads)


@pytest.mark.asyncio
async def test_full_tree_is_normalized(campaign_graph, settings):
    async with make_client(campaign_graph) as client:
        details = await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)

    campaign = details.campaign
    assert campaign.name == "Spring Launch"
    assert campaign.metrics.spend == 100.0
    assert [d.date for d in details.daily_stats] == ["20240301", "20240302"]
    assert details.hourly_stats[9].spend == 10.5
    assert details.hourly_totals.impressions == 900

    set_a, set_b = campaign.ad_sets
    assert set_a.audience.location == "Texas"
    assert set_a.audience.gender == "male"
    assert set_a.placements.type == "manual"
    assert set_a.budget.type == "daily" and set_a.budget.amount == 25.0
    assert set_a.schedule.start_date == "2024-03-01"
    assert set_a.metrics.clicks == 150

    assert set_b.placements.type == "automatic"
    assert set_b.budget.type == "lifetime" and set_b.budget.amount == 1000.0
    assert set_b.audience.age_range == "18-65"

    first_ad = set_a.ads[0]
    assert first_ad.format == "image"
    assert first_ad.media_url == "https://cdn.test/ad-1.jpg"
    assert first_ad.headline == "Build your dream home"
    assert first_ad.metrics.ctr == 2.0


@pytest.mark.asyncio
async def test_targeting_refreshed_for_ad_set_without_locations(campaign_graph, settings):
    async with make_client(campaign_graph) as client:
        details = await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)

    assert details.campaign.ad_sets[1].audience.location == "US"
    assert len(campaign_graph.calls_to("set-B")) == 1
    assert campaign_graph.calls_to("set-A") == []


@pytest.mark.asyncio
async def test_per_ad_daily_stats_follow_campaign_share(campaign_graph, settings):
    async with make_client(campaign_graph) as client:
        details = await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)

    daily = details.campaign.ad_sets[0].ads[0].daily_stats
    assert [(d.date, d.spend, d.impressions, d.clicks) for d in daily] == [
        ("20240301", 30.0, 3000, 60),
        ("20240302", 20.0, 2000, 40),
    ]


@pytest.mark.asyncio
async def test_hourly_failure_degrades_to_zeroed_profile(campaign_graph, settings):
    def hourly_fails(request):
        if request.url.params.get("breakdowns") == HOUR_BREAKDOWN:
            return graph_error(500, "An unknown error occurred")
        return {"data": DAILY_ROWS}

    campaign_graph.add("camp-1/insights", hourly_fails)

    async with make_client(campaign_graph) as client:
        details = await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)

    assert len(details.hourly_stats) == 24
    assert all(slot.spend == 0 and slot.clicks == 0 for slot in details.hourly_stats)
    assert details.hourly_totals.spend == 0
    assert len(details.daily_stats) == 2


@pytest.mark.asyncio
async def test_ads_listing_failure_leaves_ad_sets_empty(campaign_graph, settings):
    campaign_graph.add("camp-1/ads", graph_error(400, "Please reduce the amount of data"))

    async with make_client(campaign_graph) as client:
        details = await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)

    assert [len(s.ads) for s in details.campaign.ad_sets] == [0, 0]


@pytest.mark.asyncio
async def test_campaign_read_failure_propagates(campaign_graph, settings):
    campaign_graph.add("camp-1", graph_error(400, "Unsupported get request"))

    async with make_client(campaign_graph) as client:
        with pytest.raises(UpstreamError) as exc_info:
            await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)

    assert exc_info.value.status == 400


@pytest.mark.asyncio
async def test_ad_set_list_failure_propagates(campaign_graph, settings):
    campaign_graph.add("camp-1/adsets", graph_error(500, "Service temporarily unavailable"))

    async with make_client(campaign_graph) as client:
        with pytest.raises(UpstreamError):
            await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)


@pytest.mark.asyncio
async def test_unparseable_daily_row_is_skipped(campaign_graph, settings):
    def bad_daily_row(request):
        if request.url.params.get("breakdowns") == HOUR_BREAKDOWN:
            return {"data": HOURLY_ROWS}
        return {"data": [{"date_start": "2024-03-01", "spend": "n/a"}, DAILY_ROWS[1]]}

    campaign_graph.add("camp-1/insights", bad_daily_row)

    async with make_client(campaign_graph) as client:
        details = await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)

    assert [d.date for d in details.daily_stats] == ["20240302"]
    assert [s.id for s in details.campaign.ad_sets] == ["set-A", "set-B"]


@pytest.mark.asyncio
async def test_unparseable_ad_is_dropped_from_its_ad_set(campaign_graph, settings):
    bad_ad = ad("ad-bad", "set-A")
    bad_ad["insights"] = {"data": [{"clicks": "lots"}]}
    campaign_graph.add("camp-1/ads", {"data": ADS + [bad_ad]})

    async with make_client(campaign_graph) as client:
        details = await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)

    set_a, set_b = details.campaign.ad_sets
    assert [a.id for a in set_a.ads] == ["ad-1", "ad-2", "ad-3"]
    assert [a.id for a in set_b.ads] == ["ad-4", "ad-5"]


@pytest.mark.asyncio
async def test_unparseable_ad_set_is_dropped(campaign_graph, settings):
    campaign_graph.add("camp-1/adsets", {"data": AD_SETS + [{"name": "no id"}]})

    async with make_client(campaign_graph) as client:
        details = await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)

    assert [s.id for s in details.campaign.ad_sets] == ["set-A", "set-B"]


@pytest.mark.asyncio
async def test_malformed_campaign_body_is_upstream_error(campaign_graph, settings):
    campaign_graph.add("camp-1", {**CAMPAIGN, "insights": {"data": "not-a-list"}})

    async with make_client(campaign_graph) as client:
        with pytest.raises(UpstreamError) as exc_info:
            await CampaignDetailsService(client, settings=settings).get_campaign_details("camp-1", RANGE)

    assert exc_info.value.endpoint == "camp-1"


@pytest.mark.asyncio
async def test_fetch_targeting_failure_returns_none(graph):
    graph.add("set-X", graph_error(400, "Unsupported get request"))

    async with make_client(graph) as client:
        assert await EntityFetcher(client).fetch_targeting("set-X") is None


def test_apportion_with_zero_campaign_metrics():
    daily = [DailyStat(date="20240301", spend=5.0, impressions=10, clicks=1, reach=8)]
    result = apportion_daily_stats(daily, MetricTotals(spend=1.0), MetricTotals())
    assert result[0].spend == 0 and result[0].impressions == 0 and result[0].reach == 0
