import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from glowbot_paapi.amazon.signing import AmazonSigner
from glowbot_paapi.core.config import PAAPI_TARGET_PREFIX, PaapiConfig
from glowbot_paapi.core.errors import (
    ServiceUnavailableError,
    TransientUpstreamError,
    ValidationError,
)
from glowbot_paapi.core.log_utils import get_logger, write_api_log

logger = get_logger(__name__)

MAX_ITEM_COUNT = 10   # PA-API hard cap for SearchItems.ItemCount
MAX_ITEM_IDS = 10     # PA-API hard cap for GetItems.ItemIds

CATEGORY_SEARCH_INDEX = {
    "beauty": "Beauty",
    "tech": "Electronics",
    "fashion": "Fashion",
    "fitness": "SportingGoods",
    "food": "Grocery",
    "travel": "LuggageAndTravelGear",
    "pets": "PetSupplies",
    "home": "HomeAndKitchen",
    "books": "Books",
    "automotive": "Automotive",
}
ALL_CATEGORIES = "All"

_BASE_RESOURCES = [
    "Images.Primary.Large",
    "Images.Primary.Medium",
    "Images.Primary.Small",
    "ItemInfo.Title",
    "CustomerReviews.Count",
    "CustomerReviews.StarRating",
    "Offers.Listings.Price",
    "Offers.Listings.DeliveryInfo.IsPrimeEligible",
]


def search_resources() -> List[str]:
    return list(_BASE_RESOURCES)


def get_items_resources() -> List[str]:
    return _BASE_RESOURCES + ["ItemInfo.ProductInfo"]


def get_variations_resources() -> List[str]:
    return _BASE_RESOURCES + ["VariationSummary.VariationDimensions"]


def map_category_to_search_index(category: Optional[str]) -> str:
    return CATEGORY_SEARCH_INDEX.get((category or "").strip().lower(), ALL_CATEGORIES)


def rate_limit_wait_ms(attempt: int) -> int:
    """Exponential backoff for 429, capped at 5s."""
    return min(1000 * 2 ** (attempt - 1), 5000)


def server_error_wait_ms(attempt: int) -> int:
    """Linear backoff for 5xx and transport failures."""
    return 1000 * attempt


@dataclass
class PaapiResult:
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    attempts: int = 0
    duration_ms: int = 0


def _now_ms() -> int:
    return int(time.time() * 1000)


class AmazonPAAPIClient:
    """
    SearchItems / GetItems / GetVariations over signed JSON POSTs.

    Expected upstream failures (429, 5xx, network errors) are retried and,
    once retries run out, returned as `PaapiResult(success=False)`; nothing
    from the transport escapes as an exception.
    """

    def __init__(
        self,
        config: PaapiConfig,
        signer: Optional[AmazonSigner] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock_ms: Callable[[], int] = _now_ms,
        record_calls: bool = True,
    ):
        config.validate()
        self.config = config
        self.partner_tag = config.partner_tag
        self.marketplace = config.marketplace
        self.base_url = config.endpoint
        self.signer = signer or AmazonSigner.from_config(config)
        self.session = session or requests.Session()
        self.timeout = config.timeout_ms / 1000.0
        self.max_retries = max(1, config.max_retries)
        self._sleep = sleep
        self._clock_ms = clock_ms
        self._record_calls = record_calls

    # ---------- Operations ----------

    def search_items(
        self,
        keywords: str,
        category: Optional[str] = None,
        min_rating: Optional[float] = None,
        min_reviews: Optional[int] = None,
        prime_only: bool = False,
        sort_by: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> PaapiResult:
        # min_rating/min_reviews/prime_only are applied after normalization;
        # SearchItems has no equivalent server-side filters.
        body = self._base_body()
        body.update({
            "Keywords": keywords,
            "SearchIndex": map_category_to_search_index(category),
            "SortBy": sort_by or "Featured",
            "ItemCount": max(1, min(max_results or MAX_ITEM_COUNT, MAX_ITEM_COUNT)),
            "Resources": search_resources(),
        })
        return self._make_request("SearchItems", body)

    def get_items(self, asins: Sequence[str]) -> PaapiResult:
        asins = [a.strip() for a in asins if a and a.strip()]
        if not asins:
            raise ValidationError("At least one ASIN is required", [{"field": "asins", "message": "required"}])
        if len(asins) > MAX_ITEM_IDS:
            raise ValidationError(
                f"Maximum {MAX_ITEM_IDS} ASINs allowed per request",
                [{"field": "asins", "message": f"at most {MAX_ITEM_IDS} items"}],
            )
        body = self._base_body()
        body.update({"ItemIds": asins, "Resources": get_items_resources()})
        return self._make_request("GetItems", body)

    def get_variations(self, parent_asin: str) -> PaapiResult:
        if not (parent_asin or "").strip():
            raise ValidationError("Parent ASIN is required", [{"field": "asin", "message": "required"}])
        body = self._base_body()
        body.update({"ASIN": parent_asin.strip(), "Resources": get_variations_resources()})
        return self._make_request("GetVariations", body)

    # ---------- Transport ----------

    def _base_body(self) -> Dict[str, Any]:
        return {
            "PartnerType": "Associates",
            "PartnerTag": self.partner_tag,
            "Marketplace": self.marketplace,
        }

    def _make_request(self, operation: str, body: Dict[str, Any]) -> PaapiResult:
        started = self._clock_ms()
        url = f"{self.base_url}/{operation.lower()}"
        payload = json.dumps(body, separators=(",", ":"), ensure_ascii=False)
        attempts = 0
        status_code = None

        try:
            response, attempts = self._request_with_retry(operation, url, payload)
            status_code = response.status_code

            if status_code == 200:
                try:
                    result = PaapiResult(success=True, data=response.json())
                except ValueError:
                    result = PaapiResult(success=False, error=f"PA-API returned invalid JSON: {response.text[:400]}")
            else:
                result = PaapiResult(success=False, error=f"PA-API returned {status_code}: {response.text[:400]}")
        except ServiceUnavailableError as exc:
            attempts = self.max_retries
            status_code = exc.status_code
            result = PaapiResult(success=False, error=str(exc))
        except Exception as exc:
            logger.exception("PA-API %s failed unexpectedly", operation)
            result = PaapiResult(success=False, error=str(exc) or exc.__class__.__name__)

        result.status_code = status_code
        result.attempts = attempts
        result.duration_ms = self._clock_ms() - started

        if result.success:
            logger.info("PA-API %s: %s in %sms", operation, status_code, result.duration_ms)
        else:
            logger.error("PA-API %s failed after %sms: %s", operation, result.duration_ms, result.error)
        if self._record_calls:
            write_api_log(
                operation,
                result.success,
                result.duration_ms,
                status_code=status_code,
                attempts=attempts,
                error=result.error,
            )
        return result

    def _signed_headers(self, operation: str, url: str, payload: str) -> Dict[str, str]:
        signed = self.signer.sign_request(
            "POST",
            url,
            headers={
                "Content-Type": "application/json; charset=utf-8",
                "Content-Encoding": "amz-1.0",
                "X-Amz-Target": f"{PAAPI_TARGET_PREFIX}.{operation}",
            },
            body=payload,
        )
        return signed.headers

    def _request_with_retry(self, operation: str, url: str, payload: str):
        """
        POST with bounded retries. Returns (response, attempts) for any
        non-retryable status; raises ServiceUnavailableError once 429/5xx/
        network failures exhaust the attempts.
        """
        last_error: Optional[TransientUpstreamError] = None

        for attempt in range(1, self.max_retries + 1):
            # Re-sign every attempt; x-amz-date must be fresh
            headers = self._signed_headers(operation, url, payload)
            attempt_started = self._clock_ms()
            try:
                r = self.session.post(url, data=payload.encode("utf-8"), headers=headers, timeout=self.timeout)
            except requests.RequestException as exc:
                last_error = TransientUpstreamError(f"Network error: {exc}")
                if attempt < self.max_retries:
                    wait_ms = server_error_wait_ms(attempt)
                    logger.warning(
                        "PA-API %s request failed, retrying in %sms (%s/%s): %s",
                        operation, wait_ms, attempt, self.max_retries, exc,
                    )
                    self._sleep(wait_ms / 1000.0)
                continue

            elapsed = self._clock_ms() - attempt_started
            logger.debug(
                "PA-API %s attempt %s/%s -> %s in %sms | reqid %s",
                operation, attempt, self.max_retries, r.status_code, elapsed,
                r.headers.get("x-amzn-RequestId"),
            )

            if r.status_code == 429:
                last_error = TransientUpstreamError(f"PA-API returned 429: {r.text[:400]}", 429)
                if attempt < self.max_retries:
                    wait_ms = rate_limit_wait_ms(attempt)
                    logger.warning(
                        "PA-API %s rate limited, waiting %sms before retry %s/%s",
                        operation, wait_ms, attempt, self.max_retries,
                    )
                    self._sleep(wait_ms / 1000.0)
                continue

            if r.status_code >= 500:
                last_error = TransientUpstreamError(f"PA-API returned {r.status_code}: {r.text[:400]}", r.status_code)
                if attempt < self.max_retries:
                    wait_ms = server_error_wait_ms(attempt)
                    logger.warning(
                        "PA-API %s server error %s, retrying in %sms (%s/%s)",
                        operation, r.status_code, wait_ms, attempt, self.max_retries,
                    )
                    self._sleep(wait_ms / 1000.0)
                continue

            return r, attempt

        raise ServiceUnavailableError(
            str(last_error) if last_error else "PA-API unavailable",
            status_code=last_error.status_code if last_error else None,
        )
