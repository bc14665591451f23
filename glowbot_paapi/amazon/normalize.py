import re
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlencode

from glowbot_paapi.core.config import DEFAULT_SUBTAG_PREFIX, PaapiConfig
from glowbot_paapi.core.errors import NormalizationError
from glowbot_paapi.core.log_utils import get_logger

logger = get_logger(__name__)

UNKNOWN_TITLE = "Unknown Product"

_PRICE_NUMBER_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")


@dataclass
class NormalizedItem:
    asin: str
    title: str
    url: str
    image: Optional[str] = None
    rating: Optional[float] = None
    reviewCount: Optional[int] = None
    price: Optional[str] = None
    isPrime: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AscSubtagConfig:
    niche: str = "general"
    platform: str = "web"
    prefix: Optional[str] = None


# ================= Mapping Helpers ==========================================
def gv(obj, *path, default=None):
    cur = obj
    for k in path:
        if isinstance(cur, dict):
            cur = cur.get(k)
        elif isinstance(cur, list) and isinstance(k, int):
            cur = cur[k] if -len(cur) <= k < len(cur) else None
        else:
            return default
        if cur is None:
            return default
    return cur


def _to_float(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    return float(value)


def _to_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    return int(value)


def format_price(amount, currency: Optional[str]) -> Optional[str]:
    if amount is None or not currency:
        return None
    value = float(amount)
    if currency == "USD":
        return f"${value:.2f}"
    return f"{value:.2f} {currency}"


def extract_price_number(price: Optional[str]) -> Optional[float]:
    """First number-like chunk of a display price, thousands separators removed."""
    if not price:
        return None
    m = _PRICE_NUMBER_RE.search(price)
    if not m:
        return None
    try:
        return float(m.group(0).replace(",", ""))
    except ValueError:
        return None


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()
# ============================================================================


class AmazonResponseNormalizer:
    """
    Flattens SearchItems / GetItems / GetVariations payloads into
    `NormalizedItem`s. The outbound URL is always rebuilt from the ASIN so
    it carries the partner tag and ascsubtag; upstream DetailPageURL is
    ignored.
    """

    def __init__(
        self,
        partner_tag: str,
        store_domain: str = "www.amazon.com",
        subtag_prefix: str = DEFAULT_SUBTAG_PREFIX,
        today: Callable[[], date] = _utc_today,
    ):
        self.partner_tag = partner_tag or ""
        self.store_domain = store_domain or "www.amazon.com"
        self.subtag_prefix = subtag_prefix
        self._today = today

    @classmethod
    def from_config(cls, config: PaapiConfig, today: Callable[[], date] = _utc_today) -> "AmazonResponseNormalizer":
        return cls(config.partner_tag, config.store_domain, config.subtag_prefix, today=today)

    # ---------- Payload wrappers ----------

    def normalize_search_response(self, response: Any, subtag: AscSubtagConfig) -> List[NormalizedItem]:
        return self.normalize_items(gv(response, "SearchResult", "Items", default=[]), subtag)

    def normalize_items_response(self, response: Any, subtag: AscSubtagConfig) -> List[NormalizedItem]:
        return self.normalize_items(gv(response, "ItemsResult", "Items", default=[]), subtag)

    def normalize_variations_response(self, response: Any, subtag: AscSubtagConfig) -> List[NormalizedItem]:
        return self.normalize_items(gv(response, "VariationsResult", "Items", default=[]), subtag)

    def normalize_items(self, raw_items: Iterable[Any], subtag: AscSubtagConfig) -> List[NormalizedItem]:
        if not isinstance(raw_items, list):
            return []
        out: List[NormalizedItem] = []
        for raw in raw_items:
            try:
                item = self.normalize_item(raw, subtag)
            except NormalizationError as exc:
                logger.warning("Dropping item: %s", exc)
                continue
            except Exception:
                # one bad record never costs the rest of the batch
                logger.exception("Dropping item that failed to normalize")
                continue
            if item is not None:
                out.append(item)
        return out

    # ---------- Single item ----------

    def normalize_item(self, item: Any, subtag: AscSubtagConfig) -> Optional[NormalizedItem]:
        """None for records without an ASIN; NormalizationError for malformed ones."""
        if not isinstance(item, dict):
            return None
        asin = item.get("ASIN")
        if not asin or not isinstance(asin, str):
            return None

        try:
            title = gv(item, "ItemInfo", "Title", "DisplayValue") or UNKNOWN_TITLE

            image = (
                gv(item, "Images", "Primary", "Large", "URL")
                or gv(item, "Images", "Primary", "Medium", "URL")
                or gv(item, "Images", "Primary", "Small", "URL")
            )

            reviews = item.get("CustomerReviews") or {}
            rating = _to_float(
                gv(reviews, "StarRating", "Value") or gv(reviews, "StarRating", "DisplayValue")
            )
            review_count = _to_int(reviews.get("Count"))

            listing = gv(item, "Offers", "Listings", 0, default={})
            price_info = listing.get("Price") or {}
            price = price_info.get("DisplayAmount") or format_price(
                price_info.get("Amount"), price_info.get("Currency")
            )

            is_prime = bool(gv(listing, "DeliveryInfo", "IsPrimeEligible", default=False))
        except (AttributeError, TypeError, ValueError, ArithmeticError) as exc:
            raise NormalizationError(f"item {asin}: {exc}") from exc

        return NormalizedItem(
            asin=asin,
            title=title,
            image=image,
            rating=rating,
            reviewCount=review_count,
            price=price,
            isPrime=is_prime,
            url=self.affiliate_url(asin, subtag),
        )

    # ---------- Attribution ----------

    def build_asc_subtag(self, subtag: AscSubtagConfig) -> str:
        """<prefix><niche>_<YYYY-MM-DD>_<platform>, date in UTC."""
        prefix = subtag.prefix or self.subtag_prefix
        return f"{prefix}{subtag.niche}_{self._today().isoformat()}_{subtag.platform}"

    def affiliate_url(self, asin: str, subtag: AscSubtagConfig) -> str:
        params = {}
        if self.partner_tag:
            params["tag"] = self.partner_tag
        params["ascsubtag"] = self.build_asc_subtag(subtag)
        return f"https://{self.store_domain}/dp/{asin}?{urlencode(params)}"

    # ---------- Filtering ----------

    @staticmethod
    def filter_items(
        items: Iterable[NormalizedItem],
        min_rating: Optional[float] = None,
        min_reviews: Optional[int] = None,
        prime_only: bool = False,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
    ) -> List[NormalizedItem]:
        price_bound = min_price is not None or max_price is not None

        def keep(item: NormalizedItem) -> bool:
            if min_rating is not None and (item.rating is None or item.rating < min_rating):
                return False
            if min_reviews is not None and (item.reviewCount is None or item.reviewCount < min_reviews):
                return False
            if prime_only and not item.isPrime:
                return False
            if price_bound:
                value = extract_price_number(item.price)
                if value is None:
                    return False
                if min_price is not None and value < min_price:
                    return False
                if max_price is not None and value > max_price:
                    return False
            return True

        return [item for item in items if keep(item)]
