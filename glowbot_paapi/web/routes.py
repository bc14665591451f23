from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from glowbot_paapi.amazon.client import AmazonPAAPIClient, PaapiResult
from glowbot_paapi.amazon.normalize import AmazonResponseNormalizer, AscSubtagConfig, NormalizedItem
from glowbot_paapi.cache.base import PRIMARY_TTL_MS, STALE_TTL_MS, BaseCache, now_ms, stale_key
from glowbot_paapi.core.config import PaapiConfig
from glowbot_paapi.core.errors import ValidationError
from glowbot_paapi.core.log_utils import get_logger, read_api_log
from glowbot_paapi.web.rate_limit import FixedWindowRateLimiter
from glowbot_paapi.web.validation import (
    ItemsParams,
    SearchParams,
    VariationsParams,
    cache_key,
    validate_query,
)

logger = get_logger(__name__)

NOTICE_STALE = "Amazon temporarily unavailable; showing cached results."
NOTICE_UNAVAILABLE = "Amazon temporarily unavailable; try again."
NOTICE_NOT_CONFIGURED = "Amazon features are disabled. Please configure your Amazon PA-API credentials."
BROWSER_CACHE_HEADER = {"Cache-Control": "public, max-age=300"}


@dataclass
class RouteResponse:
    status: int
    payload: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


def json_ok(**extra) -> Dict[str, Any]:
    return {"success": True, **extra}


def json_err(msg, **extra) -> Dict[str, Any]:
    return {"success": False, "error": str(msg), **extra}


def _cached_items(value: Any) -> Optional[List[Dict[str, Any]]]:
    if isinstance(value, dict) and isinstance(value.get("items"), list):
        return value["items"]
    if isinstance(value, list):
        return value
    return None


class AmazonRoutes:
    """
    Request orchestration for /search, /items, /variations, /health, /status.

    Flow per data request: validate -> cache -> client -> normalize -> filter
    -> write primary + stale shadow. When the client fails the stale shadow
    is served as a degraded response; with no shadow the caller gets 503 and
    an empty list. `client` is None when credentials are missing, in which
    case data endpoints answer 503 "not configured".
    """

    def __init__(
        self,
        config: PaapiConfig,
        cache: BaseCache,
        client: Optional[AmazonPAAPIClient] = None,
        normalizer: Optional[AmazonResponseNormalizer] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        clock_ms: Callable[[], int] = now_ms,
    ):
        self.config = config
        self.cache = cache
        self.client = client
        self.normalizer = normalizer or AmazonResponseNormalizer.from_config(config)
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter()
        self._clock_ms = clock_ms

    @property
    def enabled(self) -> bool:
        return self.client is not None

    # ---------- Endpoints ----------

    def search(self, query: Mapping[str, Any]) -> RouteResponse:
        started = self._clock_ms()
        if not self.enabled:
            return self._not_configured()
        try:
            params = validate_query(SearchParams, query, "Invalid search parameters")
        except ValidationError as exc:
            return self._invalid(exc)

        def fetch() -> PaapiResult:
            return self.client.search_items(
                keywords=params.keywords,
                category=params.category,
                min_rating=params.min_rating,
                min_reviews=params.min_reviews,
                prime_only=params.prime_only,
                sort_by=params.sort_by,
                max_results=10,
            )

        def finish(response: Any, subtag: AscSubtagConfig) -> List[NormalizedItem]:
            items = self.normalizer.normalize_search_response(response, subtag)
            return self.normalizer.filter_items(
                items,
                min_rating=params.min_rating,
                min_reviews=params.min_reviews,
                prime_only=params.prime_only,
                min_price=params.min_price,
                max_price=params.max_price,
            )

        meta = {
            "query": params.keywords,
            "category": params.category,
            "filters": {
                "minRating": params.min_rating,
                "minReviews": params.min_reviews,
                "primeOnly": params.prime_only,
                "minPrice": params.min_price,
                "maxPrice": params.max_price,
            },
        }
        return self._cached_fetch("search", cache_key("search", params), params, fetch, finish, meta, started)

    def items(self, query: Mapping[str, Any]) -> RouteResponse:
        started = self._clock_ms()
        if not self.enabled:
            return self._not_configured()
        try:
            params = validate_query(ItemsParams, query)
        except ValidationError as exc:
            return self._invalid(exc)

        meta = {"requestedAsins": params.asins}
        return self._cached_fetch(
            "items",
            cache_key("items", params),
            params,
            lambda: self.client.get_items(params.asins),
            self.normalizer.normalize_items_response,
            meta,
            started,
        )

    def variations(self, query: Mapping[str, Any]) -> RouteResponse:
        started = self._clock_ms()
        if not self.enabled:
            return self._not_configured()
        try:
            params = validate_query(VariationsParams, query)
        except ValidationError as exc:
            return self._invalid(exc)

        meta = {"parentAsin": params.asin}
        return self._cached_fetch(
            "variations",
            cache_key("variations", params),
            params,
            lambda: self.client.get_variations(params.asin),
            self.normalizer.normalize_variations_response,
            meta,
            started,
        )

    def health(self) -> RouteResponse:
        stats = self.cache.stats()
        return RouteResponse(200, json_ok(
            amazon={"enabled": self.enabled, "message": self.config.amazon_message},
            cache={"type": stats["type"], "status": "active" if stats["isHealthy"] else "degraded"},
            rateLimit=self.rate_limiter.describe(),
        ))

    def status(self) -> RouteResponse:
        return RouteResponse(200, {
            "configured": self.enabled,
            "partnerTag": self.config.partner_tag,
            "region": self.config.region,
            "apiHost": self.config.api_host,
            "cache": self.cache.stats(),
            "recentCalls": read_api_log()[-10:],
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        })

    # ---------- Orchestration ----------

    def _cached_fetch(
        self,
        label: str,
        key: str,
        params,
        fetch: Callable[[], PaapiResult],
        finish: Callable[[Any, AscSubtagConfig], List[NormalizedItem]],
        meta: Dict[str, Any],
        started: int,
    ) -> RouteResponse:
        hit = self.cache.get(key)
        cached = _cached_items(hit)
        if cached is not None:
            age = self._age_minutes(hit)
            duration = self._clock_ms() - started
            logger.info("Cache hit for Amazon %s (%sm old, %sms)", label, age, duration)
            return RouteResponse(200, json_ok(
                items=cached,
                cached=True,
                cacheAge=f"{age}m",
                meta={"duration": f"{duration}ms"},
            ))

        result = fetch()
        if not result.success:
            return self._fallback(label, key, result, started)

        subtag = AscSubtagConfig(niche=params.niche, platform=params.platform)
        items = [item.to_dict() for item in finish(result.data, subtag)]
        cache_data = {"items": items, "timestamp": self._clock_ms()}
        self._store(key, cache_data)

        duration = self._clock_ms() - started
        logger.info("Amazon %s -> %s items (%sms)", label, len(items), duration)
        meta = dict(meta, resultCount=len(items), duration=f"{duration}ms")
        return RouteResponse(200, json_ok(items=items, cached=False, meta=meta), dict(BROWSER_CACHE_HEADER))

    def _fallback(self, label: str, key: str, result: PaapiResult, started: int) -> RouteResponse:
        stale = self.cache.get(stale_key(key))
        stale_items = _cached_items(stale)
        duration = self._clock_ms() - started
        if stale_items is not None:
            logger.warning("PA-API %s failed, serving stale cache (%sms): %s", label, duration, result.error)
            return RouteResponse(200, json_ok(
                items=stale_items,
                cached=True,
                stale=True,
                cacheAge=f"{self._age_minutes(stale)}m",
                notice=NOTICE_STALE,
                meta={"duration": f"{duration}ms", "degraded": True},
            ))

        logger.error("PA-API %s failed with no stale cache (%sms): %s", label, duration, result.error)
        return RouteResponse(503, json_err(
            result.error or "Amazon unavailable",
            items=[],
            notice=NOTICE_UNAVAILABLE,
            meta={"duration": f"{duration}ms", "degraded": True},
        ))

    def _store(self, key: str, cache_data: Dict[str, Any]) -> None:
        try:
            self.cache.set(key, cache_data, PRIMARY_TTL_MS)
            self.cache.set(stale_key(key), cache_data, STALE_TTL_MS)
        except OSError as exc:
            logger.error("Failed to write cache entry %s: %s", key, exc)

    def _age_minutes(self, value: Any) -> int:
        ts = value.get("timestamp") if isinstance(value, dict) else None
        if not isinstance(ts, (int, float)):
            return 0
        return max(0, int((self._clock_ms() - ts) // 60000))

    def _not_configured(self) -> RouteResponse:
        return RouteResponse(503, json_err(
            "Amazon PA-API not configured",
            message=self.config.amazon_message,
            items=[],
            notice=NOTICE_NOT_CONFIGURED,
        ))

    @staticmethod
    def _invalid(exc: ValidationError) -> RouteResponse:
        return RouteResponse(400, json_err(exc, details=exc.details))
