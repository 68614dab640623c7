import pytest

from campaign_insights.models.schemas import Ad, AdMetrics, CarouselCard
from campaign_insights.services.carousel import (
    CARD_BREAKDOWN,
    DESTINATION_BREAKDOWN,
    CarouselAttributionResolver,
    direct_card_clicks,
    estimated_share,
    extract_utm_content,
    substitute_template_vars,
)
from campaign_insights.models.graph import InsightRow
from campaign_insights.services.date_ranges import DateRange

from conftest import graph_error, make_client

RANGE = DateRange("2024-03-01", "2024-03-07")


def carousel_ad(cards, clicks=30):
    return Ad(
        id="ad-1",
        name="Spring Carousel",
        adset_id="set-1",
        status="ACTIVE",
        format="carousel",
        carousel_cards=cards,
        metrics=AdMetrics(clicks=clicks, impressions=1000),
    )


def test_substitute_template_vars():
    url = "https://shop.test/?utm_campaign={{campaign.name}}&utm_content={{ad.name}}"
    assert substitute_template_vars(url, "Spring", "Card A") == (
        "https://shop.test/?utm_campaign=Spring&utm_content=Card A"
    )


@pytest.mark.parametrize("url,expected", [
    ("https://shop.test/?utm_source=fb&utm_content=card_b", "card_b"),
    ("https://shop.test/?utm_content=summer%20sale&utm_medium=paid", "summer sale"),
    ("https://shop.test/p?x=1#utm_content=nope", ""),
    ("https://shop.test/", ""),
    ("", ""),
])
def test_extract_utm_content(url, expected):
    assert extract_utm_content(url) == expected


def test_estimated_share_weights_earlier_cards_higher():
    shares = [estimated_share(60, i, 3) for i in range(3)]
    assert shares == [30, 20, 10]


@pytest.mark.parametrize("count", [1, 2, 3, 4, 5, 7, 10])
@pytest.mark.parametrize("total", [0, 1, 17, 101, 999])
def test_estimated_shares_conserve_total_within_rounding(count, total):
    shares = [estimated_share(total, i, count) for i in range(count)]
    assert abs(sum(shares) - total) <= count - 1


def test_direct_card_clicks_prefers_link_clicks():
    rows = [InsightRow.model_validate({"actions": [
        {"action_type": "onsite_web_click", "value": "2", "action_carousel_card_id": "1"},
        {"action_type": "link_click", "value": "9", "action_carousel_card_id": "1"},
    ]})]
    assert direct_card_clicks(rows, 1) == 9
    assert direct_card_clicks(rows, 0) is None


def breakdown_routes(graph, card_rows, destination_rows):
    def handler(request):
        breakdown = request.url.params.get("action_breakdowns")
        if breakdown == CARD_BREAKDOWN:
            return card_rows
        if breakdown == DESTINATION_BREAKDOWN:
            return destination_rows
        return graph_error(400, "Unknown breakdown")

    graph.add("ad-1/insights", handler)


@pytest.mark.asyncio
async def test_each_card_uses_its_own_tier(graph):
    breakdown_routes(
        graph,
        card_rows={"data": [{"actions": [
            {"action_type": "link_click", "value": "7", "action_carousel_card_id": "0"},
        ]}]},
        destination_rows={"data": [{"actions": [
            {"action_type": "link_click", "value": "4",
             "action_destination": "https://shop.test/?utm_content=card_b"},
            {"action_type": "post_reaction", "value": "50",
             "action_destination": "https://shop.test/?utm_content=card_b"},
        ]}]},
    )
    ad = carousel_ad([
        CarouselCard(headline="A", image_url="a.jpg", link_url="https://shop.test/?utm_content=card_a"),
        CarouselCard(headline="B", image_url="b.jpg", link_url="https://shop.test/?utm_content=card_b"),
        CarouselCard(headline="C", image_url="c.jpg", link_url="https://shop.test/"),
    ])

    async with make_client(graph) as client:
        resolved = await CarouselAttributionResolver(client, RANGE).resolve_ad(ad, "Spring")

    cards = resolved.carousel_cards
    assert [card.click_source for card in cards] == ["card_breakdown", "destination_url", "estimated"]
    assert [card.actual_clicks for card in cards] == [7, 4, 5]
    assert cards[1].utm_content == "card_b"
    # one request per breakdown, shared by all three cards
    assert len(graph.calls_to("ad-1/insights")) == 2


@pytest.mark.asyncio
async def test_insight_failure_falls_back_to_estimate_for_that_card(graph):
    graph.add("ad-1/insights", graph_error(500, "Unknown error"))
    ad = carousel_ad([
        CarouselCard(image_url="a.jpg", link_url="https://shop.test/?utm_content=a"),
        CarouselCard(image_url="b.jpg", link_url="https://shop.test/?utm_content=b"),
    ], clicks=30)

    async with make_client(graph) as client:
        resolved = await CarouselAttributionResolver(client, RANGE).resolve_ad(ad, "Spring")

    assert [card.click_source for card in resolved.carousel_cards] == ["estimated", "estimated"]
    assert [card.actual_clicks for card in resolved.carousel_cards] == [20, 10]
    assert len(graph.calls_to("ad-1/insights")) == 1


@pytest.mark.asyncio
async def test_missing_image_fetched_from_child_attachments(graph):
    breakdown_routes(graph, {"data": []}, {"data": []})
    graph.add("ad-1", {
        "id": "ad-1",
        "creative": {"object_story_spec": {"link_data": {"child_attachments": [
            {"image_url": "https://cdn.test/0.jpg"},
            {"picture": "https://cdn.test/1.jpg"},
        ]}}},
    })
    ad = carousel_ad([CarouselCard(headline="A"), CarouselCard(headline="B")])

    async with make_client(graph) as client:
        resolved = await CarouselAttributionResolver(client, RANGE).resolve_ad(ad, "Spring")

    assert [card.image_url for card in resolved.carousel_cards] == [
        "https://cdn.test/0.jpg",
        "https://cdn.test/1.jpg",
    ]
    assert len(graph.calls_to("ad-1")) == 1


@pytest.mark.asyncio
async def test_image_fetch_failure_leaves_image_empty(graph):
    breakdown_routes(graph, {"data": []}, {"data": []})
    graph.add("ad-1", graph_error(400, "Unsupported get request"))
    ad = carousel_ad([CarouselCard(headline="A")], clicks=3)

    async with make_client(graph) as client:
        resolved = await CarouselAttributionResolver(client, RANGE).resolve_ad(ad, "Spring")

    card = resolved.carousel_cards[0]
    assert card.image_url == ""
    assert card.actual_clicks == 3


@pytest.mark.asyncio
async def test_template_vars_substituted_before_utm_extraction(graph):
    breakdown_routes(graph, {"data": []}, {"data": []})
    ad = carousel_ad([
        CarouselCard(image_url="a.jpg", link_url="https://shop.test/?utm_content={{ad.name}}"),
    ])

    async with make_client(graph) as client:
        resolved = await CarouselAttributionResolver(client, RANGE).resolve_ad(ad, "Spring")

    card = resolved.carousel_cards[0]
    assert card.link_url == "https://shop.test/?utm_content=Spring Carousel"
    assert card.utm_content == "Spring Carousel"


@pytest.mark.asyncio
async def test_non_carousel_ads_are_untouched(graph):
    ad = Ad(id="ad-2", name="Static", adset_id="set-1", status="ACTIVE", format="image")

    async with make_client(graph) as client:
        assert await CarouselAttributionResolver(client, RANGE).resolve_ad(ad, "Spring") is ad

    assert graph.requests == []


@pytest.mark.asyncio
async def test_destination_failure_only_affects_cards_that_need_it(graph):
    breakdown_routes(
        graph,
        card_rows={"data": [{"actions": [
            {"action_type": "link_click", "value": "7", "action_carousel_card_id": "0"},
        ]}]},
        destination_rows=graph_error(500, "Unknown error"),
    )
    ad = carousel_ad([
        CarouselCard(image_url="a.jpg", link_url="https://shop.test/?utm_content=a"),
        CarouselCard(image_url="b.jpg", link_url="https://shop.test/?utm_content=b"),
        CarouselCard(image_url="c.jpg", link_url="https://shop.test/?utm_content=c"),
    ], clicks=60)

    async with make_client(graph) as client:
        resolved = await CarouselAttributionResolver(client, RANGE).resolve_ad(ad, "Spring")

    cards = resolved.carousel_cards
    assert [card.click_source for card in cards] == ["card_breakdown", "estimated", "estimated"]
    assert [card.actual_clicks for card in cards] == [7, 20, 10]
    assert len(graph.calls_to("ad-1/insights")) == 2


@pytest.mark.asyncio
async def test_destination_breakdown_skipped_when_every_card_has_direct_clicks(graph):
    breakdown_routes(
        graph,
        card_rows={"data": [{"actions": [
            {"action_type": "link_click", "value": "5", "action_carousel_card_id": "0"},
            {"action_type": "link_click", "value": "3", "action_carousel_card_id": "1"},
        ]}]},
        destination_rows={"data": []},
    )
    ad = carousel_ad([CarouselCard(image_url="a.jpg"), CarouselCard(image_url="b.jpg")])

    async with make_client(graph) as client:
        resolved = await CarouselAttributionResolver(client, RANGE).resolve_ad(ad, "Spring")

    assert [card.actual_clicks for card in resolved.carousel_cards] == [5, 3]
    breakdowns = [r.url.params.get("action_breakdowns") for r in graph.calls_to("ad-1/insights")]
    assert breakdowns == [CARD_BREAKDOWN]


@pytest.mark.asyncio
async def test_malformed_creative_body_leaves_image_empty(graph):
    breakdown_routes(graph, {"data": []}, {"data": []})
    graph.add("ad-1", {"id": "ad-1", "creative": "not-an-object"})
    ad = carousel_ad([CarouselCard(headline="A"), CarouselCard(headline="B")], clicks=3)

    async with make_client(graph) as client:
        resolved = await CarouselAttributionResolver(client, RANGE).resolve_ad(ad, "Spring")

    assert [card.image_url for card in resolved.carousel_cards] == ["", ""]
    assert [card.click_source for card in resolved.carousel_cards] == ["estimated", "estimated"]
