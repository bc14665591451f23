from glowbot_paapi.amazon.client import PaapiResult
from glowbot_paapi.cache.base import HOUR_MS, PRIMARY_TTL_MS, STALE_TTL_MS
from glowbot_paapi.web.routes import NOTICE_STALE, NOTICE_UNAVAILABLE

from conftest import FakeResponse, StubClient, TODAY, raw_item, search_payload

WIDGET_KEY = 'search:{"keywords":"widget"}'
FAILED = PaapiResult(success=False, error="PA-API returned 503: down", status_code=503, attempts=3)


def _stale_items(n=3):
    return [
        {"asin": f"B00000000{i}", "title": f"Cached {i}", "url": f"https://www.amazon.com/dp/B00000000{i}",
         "image": None, "rating": 4.0, "reviewCount": 10, "price": "$1.00", "isPrime": True}
        for i in range(n)
    ]


class TestNotConfigured:
    def test_data_endpoints_answer_503(self, make_routes):
        routes = make_routes(client=None)
        for resp in (
            routes.search({"keywords": "widget"}),
            routes.items({"asins": "B000000001"}),
            routes.variations({"asin": "B000000001"}),
        ):
            assert resp.status == 503
            assert resp.payload["success"] is False
            assert resp.payload["items"] == []

    def test_health_reports_disabled(self, make_routes):
        payload = make_routes(client=None).health().payload
        assert payload["success"] is True
        assert payload["amazon"]["enabled"] is False


class TestValidation:
    def test_invalid_input_is_rejected_before_any_io(self, make_routes, file_cache):
        client = StubClient(FAILED)
        routes = make_routes(client=client)
        for resp in (
            routes.search({}),
            routes.search({"keywords": "x", "minRating": "7"}),
            routes.search({"keywords": "x", "sortBy": "Cheapest"}),
            routes.items({"asins": "nope"}),
            routes.items({"asins": ",".join(f"B{i:09d}" for i in range(11))}),
            routes.variations({}),
        ):
            assert resp.status == 400
            assert resp.payload["success"] is False
            assert resp.payload["details"]
        assert client.calls == []
        assert file_cache.keys() == []


class TestSearch:
    def test_miss_fetches_normalizes_and_writes_both_keys(self, make_routes, file_cache):
        client = StubClient(PaapiResult(success=True, data=search_payload(raw_item(), raw_item(asin="B000000002"))))
        resp = make_routes(client=client).search({"keywords": "widget"})

        assert resp.status == 200
        assert resp.headers == {"Cache-Control": "public, max-age=300"}
        body = resp.payload
        assert body["success"] is True
        assert body["cached"] is False
        assert [i["asin"] for i in body["items"]] == ["B000000001", "B000000002"]
        assert body["meta"]["resultCount"] == 2
        assert body["meta"]["query"] == "widget"
        assert body["meta"]["duration"].endswith("ms")

        assert file_cache.keys() == [WIDGET_KEY, WIDGET_KEY + ":stale"]
        assert file_cache.get(WIDGET_KEY)["items"] == body["items"]
        assert file_cache.get(WIDGET_KEY + ":stale")["items"] == body["items"]

    def test_client_receives_mapped_params(self, make_routes):
        client = StubClient(PaapiResult(success=True, data=search_payload()))
        make_routes(client=client).search({
            "keywords": "yoga mat", "category": "fitness", "minRating": "4", "primeOnly": "1",
        })
        [(op, kwargs)] = client.calls
        assert op == "search"
        assert kwargs["keywords"] == "yoga mat"
        assert kwargs["category"] == "fitness"
        assert kwargs["min_rating"] == 4.0
        assert kwargs["prime_only"] is True
        assert kwargs["sort_by"] == "Featured"
        assert kwargs["max_results"] == 10

    def test_second_request_is_served_from_cache(self, make_routes, clock):
        client = StubClient(PaapiResult(success=True, data=search_payload(raw_item())))
        routes = make_routes(client=client)
        first = routes.search({"keywords": "widget"})
        clock.advance(5 * 60 * 1000)
        second = routes.search({"keywords": "widget", "sortBy": "Featured"})

        assert len(client.calls) == 1
        assert second.status == 200
        assert second.payload["cached"] is True
        assert second.payload["cacheAge"] == "5m"
        assert second.payload["items"] == first.payload["items"]

    def test_primary_expiry_triggers_refetch(self, make_routes, clock):
        client = StubClient(PaapiResult(success=True, data=search_payload(raw_item())))
        routes = make_routes(client=client)
        routes.search({"keywords": "widget"})
        clock.advance(PRIMARY_TTL_MS + 1)
        resp = routes.search({"keywords": "widget"})
        assert len(client.calls) == 2
        assert resp.payload["cached"] is False

    def test_filters_apply_to_normalized_items(self, make_routes):
        client = StubClient(PaapiResult(success=True, data=search_payload(
            raw_item(asin="B000000001", rating=4.6, prime=True, price="$20.00"),
            raw_item(asin="B000000002", rating=3.0, prime=True, price="$20.00"),
            raw_item(asin="B000000003", rating=4.9, prime=False, price="$20.00"),
            raw_item(asin="B000000004", rating=4.9, prime=True, price="$90.00"),
        )))
        resp = make_routes(client=client).search({
            "keywords": "widget", "minRating": "4", "primeOnly": "true", "maxPrice": "50",
        })
        assert [i["asin"] for i in resp.payload["items"]] == ["B000000001"]


class TestStaleFallback:
    def test_failure_serves_stale_shadow(self, make_routes, file_cache, clock):
        file_cache.set(WIDGET_KEY + ":stale", {"items": _stale_items(), "timestamp": clock.ms}, STALE_TTL_MS)
        clock.advance(3 * HOUR_MS)

        resp = make_routes(client=StubClient(FAILED)).search({"keywords": "widget"})

        assert resp.status == 200
        body = resp.payload
        assert body["success"] is True
        assert len(body["items"]) == 3
        assert body["cached"] is True
        assert body["stale"] is True
        assert body["notice"] == NOTICE_STALE
        assert body["cacheAge"] == "180m"
        assert body["meta"]["degraded"] is True

    def test_bare_list_shadow_is_accepted(self, make_routes, file_cache):
        file_cache.set(WIDGET_KEY + ":stale", _stale_items(), STALE_TTL_MS)
        resp = make_routes(client=StubClient(FAILED)).search({"keywords": "widget"})
        assert resp.status == 200
        assert len(resp.payload["items"]) == 3

    def test_failure_without_shadow_is_503(self, make_routes):
        resp = make_routes(client=StubClient(FAILED)).search({"keywords": "widget"})
        assert resp.status == 503
        assert resp.payload["success"] is False
        assert resp.payload["items"] == []
        assert resp.payload["notice"] == NOTICE_UNAVAILABLE

    def test_expired_shadow_counts_as_missing(self, make_routes, file_cache, clock):
        file_cache.set(WIDGET_KEY + ":stale", {"items": _stale_items(), "timestamp": clock.ms}, STALE_TTL_MS)
        clock.advance(STALE_TTL_MS + 1)
        resp = make_routes(client=StubClient(FAILED)).search({"keywords": "widget"})
        assert resp.status == 503
        assert resp.payload["items"] == []

    def test_shadow_outlives_primary(self, make_routes, clock):
        ok = PaapiResult(success=True, data=search_payload(raw_item()))
        routes = make_routes(client=StubClient(ok))
        routes.search({"keywords": "widget"})

        clock.advance(2 * 24 * HOUR_MS)
        routes.client = StubClient(FAILED)
        resp = routes.search({"keywords": "widget"})
        assert resp.status == 200
        assert resp.payload["stale"] is True
        assert [i["asin"] for i in resp.payload["items"]] == ["B000000001"]

    def test_items_endpoint_falls_back_too(self, make_routes, file_cache):
        file_cache.set('items:{"asins":["B000000001"]}:stale', {"items": _stale_items(1)}, STALE_TTL_MS)
        resp = make_routes(client=StubClient(FAILED)).items({"asins": "b000000001"})
        assert resp.status == 200
        assert resp.payload["stale"] is True


class TestItemsAndVariations:
    def test_items(self, make_routes, file_cache):
        client = StubClient(PaapiResult(success=True, data={"ItemsResult": {"Items": [raw_item()]}}))
        resp = make_routes(client=client).items({"asins": "B000000001", "niche": "beauty", "platform": "ios"})
        assert resp.status == 200
        assert client.calls == [("items", ["B000000001"])]
        [item] = resp.payload["items"]
        assert item["url"].endswith(f"&ascsubtag=glowbot_beauty_{TODAY.isoformat()}_ios")
        assert resp.payload["meta"]["requestedAsins"] == ["B000000001"]
        assert file_cache.has('items:{"asins":["B000000001"],"niche":"beauty","platform":"ios"}')

    def test_variations(self, make_routes):
        client = StubClient(PaapiResult(success=True, data={"VariationsResult": {"Items": [
            raw_item(asin="B000000011"), raw_item(asin="B000000012"),
        ]}}))
        resp = make_routes(client=client).variations({"asin": "B000000010"})
        assert resp.status == 200
        assert client.calls == [("variations", "B000000010")]
        assert [i["asin"] for i in resp.payload["items"]] == ["B000000011", "B000000012"]
        assert resp.payload["meta"]["parentAsin"] == "B000000010"


class TestHealthAndStatus:
    def test_health(self, make_routes):
        payload = make_routes().health().payload
        assert payload == {
            "success": True,
            "amazon": {"enabled": True, "message": "Amazon PA-API configured"},
            "cache": {"type": "file", "status": "active"},
            "rateLimit": {"windowMs": 60000, "maxRequests": 30},
        }

    def test_status(self, make_routes, file_cache, monkeypatch, tmp_path):
        monkeypatch.setattr("glowbot_paapi.core.log_utils.PAAPI_LOGS_PATH", str(tmp_path / "none.json"))
        file_cache.set("k", 1)
        payload = make_routes().status().payload
        assert payload["configured"] is True
        assert payload["partnerTag"] == "testtag-20"
        assert payload["region"] == "us-east-1"
        assert payload["cache"]["keyCount"] == 1
        assert payload["recentCalls"] == []
        assert payload["timestamp"].endswith("Z")


def test_end_to_end_yoga_mat(make_client, make_routes):
    """Signed client + normalizer + filter: only the well-rated mat survives."""
    client, session = make_client([FakeResponse(200, search_payload(
        raw_item(asin="B0YOGAMAT1", title="Cork Yoga Mat", rating=4.7, reviews=812, price="$39.99"),
        raw_item(asin="B0YOGAMAT2", title="Budget Yoga Mat", rating=3.2, reviews=40, price="$9.99"),
    ))])
    resp = make_routes(client=client).search({"keywords": "yoga mat", "category": "fitness", "minRating": "4"})

    assert resp.status == 200
    [item] = resp.payload["items"]
    assert item["asin"] == "B0YOGAMAT1"
    assert item["title"] == "Cork Yoga Mat"
    assert "tag=testtag-20" in item["url"]
    assert item["url"].endswith(f"&ascsubtag=glowbot_general_{TODAY.isoformat()}_web")

    body = session.sent_bodies()[0]
    assert body["SearchIndex"] == "SportingGoods"
    assert body["Keywords"] == "yoga mat"
