import json
import re
from typing import Any, Dict, List, Literal, Mapping, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from glowbot_paapi.amazon.client import MAX_ITEM_IDS
from glowbot_paapi.core.errors import ValidationError

ASIN_RE = re.compile(r"^[A-Z0-9]{10}$")
_TAG_PART = r"^[A-Za-z0-9_\-]+$"

SortBy = Literal[
    "Featured",
    "Price:LowToHigh",
    "Price:HighToLow",
    "Relevance",
    "NewestArrivals",
    "AvgCustomerReviews",
]


class _QueryModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    niche: str = Field(default="general", min_length=1, max_length=50, pattern=_TAG_PART)
    platform: str = Field(default="web", min_length=1, max_length=50, pattern=_TAG_PART)

    def cache_params(self) -> Dict[str, Any]:
        # Defaults are dropped so `?keywords=x` and `?keywords=x&sortBy=Featured` share a key
        return self.model_dump(by_alias=True, exclude_defaults=True)


class SearchParams(_QueryModel):
    keywords: str = Field(min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, max_length=50)
    min_rating: Optional[float] = Field(default=None, ge=1, le=5, alias="minRating")
    min_reviews: Optional[int] = Field(default=None, ge=0, alias="minReviews")
    prime_only: bool = Field(default=False, alias="primeOnly")
    sort_by: SortBy = Field(default="Featured", alias="sortBy")
    min_price: Optional[float] = Field(default=None, ge=0, alias="minPrice")
    max_price: Optional[float] = Field(default=None, ge=0, alias="maxPrice")

    @model_validator(mode="after")
    def _check_price_range(self) -> "SearchParams":
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("minPrice must not exceed maxPrice")
        return self


def _split_asins(value: Any) -> Any:
    if isinstance(value, str):
        value = value.split(",")
    if isinstance(value, (list, tuple)):
        seen: List[str] = []
        for raw in value:
            asin = str(raw).strip().upper()
            if asin and asin not in seen:
                seen.append(asin)
        return seen
    return value


def _check_asin(asin: str) -> str:
    if not ASIN_RE.match(asin):
        raise ValueError(f"invalid ASIN {asin!r}; expected 10 letters or digits")
    return asin


class ItemsParams(_QueryModel):
    asins: List[str] = Field(min_length=1, max_length=MAX_ITEM_IDS)

    @field_validator("asins", mode="before")
    @classmethod
    def _split(cls, value: Any) -> Any:
        return _split_asins(value)

    @field_validator("asins")
    @classmethod
    def _each_asin(cls, value: List[str]) -> List[str]:
        return [_check_asin(a) for a in value]

    def cache_params(self) -> Dict[str, Any]:
        params = super().cache_params()
        params["asins"] = sorted(self.asins)
        return params


class VariationsParams(_QueryModel):
    asin: str

    @field_validator("asin", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("asin")
    @classmethod
    def _valid(cls, value: str) -> str:
        return _check_asin(value)


M = TypeVar("M", bound=_QueryModel)


def _error_details(exc: pydantic.ValidationError) -> List[Dict[str, Any]]:
    details = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "query"
        details.append({"field": loc, "message": err.get("msg", "invalid value"), "type": err.get("type")})
    return details


def validate_query(model: Type[M], query: Mapping[str, Any], message: str = "Invalid request parameters") -> M:
    """
    Validate flat query params; empty strings count as absent.
    Raises ValidationError with one {field, message, type} per failure.
    """
    cleaned = {k: v for k, v in query.items() if not (isinstance(v, str) and not v.strip())}
    try:
        return model.model_validate(cleaned)
    except pydantic.ValidationError as exc:
        raise ValidationError(message, _error_details(exc)) from exc


def cache_key(prefix: str, params: _QueryModel) -> str:
    """`<prefix>:<sorted compact JSON>`; key order never changes the result."""
    return f"{prefix}:" + json.dumps(params.cache_params(), sort_keys=True, separators=(",", ":"))
