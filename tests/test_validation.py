import pytest

from glowbot_paapi.core.errors import ValidationError
from glowbot_paapi.web.validation import (
    ItemsParams,
    SearchParams,
    VariationsParams,
    cache_key,
    validate_query,
)


def _fields(exc):
    return {d["field"] for d in exc.value.details}


class TestSearchParams:
    def test_minimal_query_uses_defaults(self):
        p = validate_query(SearchParams, {"keywords": "widget"})
        assert p.keywords == "widget"
        assert p.sort_by == "Featured"
        assert p.prime_only is False
        assert p.niche == "general"
        assert p.platform == "web"

    def test_query_strings_are_coerced(self):
        p = validate_query(SearchParams, {
            "keywords": " yoga mat ",
            "minRating": "4",
            "minReviews": "100",
            "primeOnly": "true",
            "sortBy": "Price:LowToHigh",
            "maxPrice": "30",
        })
        assert p.keywords == "yoga mat"
        assert p.min_rating == 4.0
        assert p.min_reviews == 100
        assert p.prime_only is True
        assert p.sort_by == "Price:LowToHigh"
        assert p.max_price == 30.0

    def test_empty_strings_count_as_absent(self):
        p = validate_query(SearchParams, {"keywords": "x", "minRating": "", "category": "  "})
        assert p.min_rating is None
        assert p.category is None

    @pytest.mark.parametrize("query,field", [
        ({}, "keywords"),
        ({"keywords": "x" * 201}, "keywords"),
        ({"keywords": "x", "minRating": "7"}, "minRating"),
        ({"keywords": "x", "minRating": "0.5"}, "minRating"),
        ({"keywords": "x", "minReviews": "-1"}, "minReviews"),
        ({"keywords": "x", "sortBy": "Cheapest"}, "sortBy"),
        ({"keywords": "x", "niche": "has space"}, "niche"),
        ({"keywords": "x", "minPrice": "abc"}, "minPrice"),
    ])
    def test_invalid_fields_are_reported(self, query, field):
        with pytest.raises(ValidationError) as exc:
            validate_query(SearchParams, query, "Invalid search parameters")
        assert str(exc.value) == "Invalid search parameters"
        assert field in _fields(exc)
        assert all({"field", "message", "type"} <= set(d) for d in exc.value.details)

    def test_inverted_price_range(self):
        with pytest.raises(ValidationError) as exc:
            validate_query(SearchParams, {"keywords": "x", "minPrice": "50", "maxPrice": "10"})
        assert "minPrice must not exceed maxPrice" in exc.value.details[0]["message"]

    def test_unknown_params_are_ignored(self):
        assert validate_query(SearchParams, {"keywords": "x", "utm_source": "mail"}).keywords == "x"


class TestItemsParams:
    def test_comma_list_is_split_uppercased_and_deduped(self):
        p = validate_query(ItemsParams, {"asins": "b000000002, B000000001,b000000002,"})
        assert p.asins == ["B000000002", "B000000001"]

    @pytest.mark.parametrize("asins", ["", "SHORT", "B00000000!", ",".join(f"B{i:09d}" for i in range(11))])
    def test_rejects_bad_lists(self, asins):
        with pytest.raises(ValidationError) as exc:
            validate_query(ItemsParams, {"asins": asins})
        assert "asins" in {d["field"].split(".")[0] for d in exc.value.details}

    def test_ten_asins_allowed(self):
        p = validate_query(ItemsParams, {"asins": ",".join(f"B{i:09d}" for i in range(10))})
        assert len(p.asins) == 10


class TestVariationsParams:
    def test_asin_normalized(self):
        assert validate_query(VariationsParams, {"asin": " b000000001 "}).asin == "B000000001"

    def test_asin_required(self):
        with pytest.raises(ValidationError) as exc:
            validate_query(VariationsParams, {})
        assert "asin" in _fields(exc)


class TestCacheKey:
    def test_defaults_are_left_out(self):
        p = validate_query(SearchParams, {"keywords": "widget"})
        assert cache_key("search", p) == 'search:{"keywords":"widget"}'

    def test_explicit_defaults_share_the_key(self):
        a = validate_query(SearchParams, {"keywords": "widget"})
        b = validate_query(SearchParams, {"keywords": "widget", "sortBy": "Featured", "niche": "general"})
        assert cache_key("search", a) == cache_key("search", b)

    def test_param_order_does_not_matter(self):
        a = validate_query(SearchParams, {"keywords": "w", "minRating": "4", "category": "tech"})
        b = validate_query(SearchParams, {"category": "tech", "minRating": "4", "keywords": "w"})
        assert cache_key("search", a) == cache_key("search", b)
        assert cache_key("search", a) == 'search:{"category":"tech","keywords":"w","minRating":4.0}'

    def test_different_params_give_different_keys(self):
        a = validate_query(SearchParams, {"keywords": "w", "niche": "fitness"})
        b = validate_query(SearchParams, {"keywords": "w"})
        assert cache_key("search", a) != cache_key("search", b)

    def test_asin_order_does_not_matter(self):
        a = validate_query(ItemsParams, {"asins": "B000000001,B000000002"})
        b = validate_query(ItemsParams, {"asins": "B000000002,B000000001"})
        assert cache_key("items", a) == cache_key("items", b) == 'items:{"asins":["B000000001","B000000002"]}'
