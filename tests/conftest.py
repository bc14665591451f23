import json
from datetime import date, datetime, timezone

import pytest

from glowbot_paapi.amazon.client import AmazonPAAPIClient, PaapiResult
from glowbot_paapi.amazon.normalize import AmazonResponseNormalizer
from glowbot_paapi.amazon.signing import AmazonSigner
from glowbot_paapi.cache.file_cache import FileCache
from glowbot_paapi.core.config import PaapiConfig
from glowbot_paapi.web.rate_limit import FixedWindowRateLimiter
from glowbot_paapi.web.routes import AmazonRoutes

TODAY = date(2026, 10, 19)
PARTNER_TAG = "testtag-20"


class FakeClock:
    """Epoch-ms clock that only moves when told to (or when slept on)."""

    def __init__(self, start_ms=1_760_832_000_000):
        self.ms = start_ms
        self.sleeps = []

    def __call__(self):
        return self.ms

    def advance(self, ms):
        self.ms += int(ms)

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.advance(seconds * 1000)

    def utc(self):
        return datetime.fromtimestamp(self.ms / 1000, tz=timezone.utc)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None, headers=None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text
        self.headers = headers or {"x-amzn-RequestId": "req-1"}

    def json(self):
        if self._payload is None:
            return json.loads(self.text)
        return self._payload


class FakeSession:
    """Replays queued responses/exceptions; the last one repeats forever."""

    def __init__(self, responses, clock=None, latency_ms=0):
        self.responses = list(responses)
        self.calls = []
        self.clock = clock
        self.latency_ms = latency_ms

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": data, "headers": dict(headers or {}), "timeout": timeout})
        if self.clock is not None and self.latency_ms:
            self.clock.advance(self.latency_ms)
        nxt = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(nxt, BaseException):
            raise nxt
        return nxt

    def sent_bodies(self):
        return [json.loads(c["data"].decode("utf-8")) for c in self.calls]


class StubClient:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def search_items(self, **kwargs):
        self.calls.append(("search", kwargs))
        return self.result

    def get_items(self, asins):
        self.calls.append(("items", list(asins)))
        return self.result

    def get_variations(self, parent_asin):
        self.calls.append(("variations", parent_asin))
        return self.result


def raw_item(
    asin="B000000001",
    title="Widget",
    rating=4.5,
    reviews=120,
    price="$19.99",
    prime=True,
    image="https://m.media-amazon.com/images/I/large.jpg",
    detail_url="https://www.amazon.com/dp/B000000001?tag=someone-else-20",
):
    item = {"ASIN": asin, "DetailPageURL": detail_url}
    if title is not None:
        item["ItemInfo"] = {"Title": {"DisplayValue": title}}
    if image is not None:
        item["Images"] = {"Primary": {"Large": {"URL": image}}}
    reviews_block = {}
    if rating is not None:
        reviews_block["StarRating"] = {"Value": rating}
    if reviews is not None:
        reviews_block["Count"] = reviews
    if reviews_block:
        item["CustomerReviews"] = reviews_block
    listing = {"DeliveryInfo": {"IsPrimeEligible": prime}}
    if price is not None:
        listing["Price"] = {"DisplayAmount": price}
    item["Offers"] = {"Listings": [listing]}
    return item


def search_payload(*items):
    return {"SearchResult": {"Items": list(items), "TotalResultCount": len(items)}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return PaapiConfig(
        access_key="AKIDEXAMPLE",
        secret_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
        partner_tag=PARTNER_TAG,
        cache_dir=str(tmp_path / "cache"),
    )


@pytest.fixture
def make_client(config, clock):
    def _make(responses, cfg=None, latency_ms=0):
        cfg = cfg or config
        session = FakeSession(responses, clock=clock, latency_ms=latency_ms)
        client = AmazonPAAPIClient(
            cfg,
            signer=AmazonSigner.from_config(cfg, clock=clock.utc),
            session=session,
            sleep=clock.sleep,
            clock_ms=clock,
            record_calls=False,
        )
        return client, session
    return _make


@pytest.fixture
def file_cache(tmp_path, clock):
    return FileCache(str(tmp_path / "cache"), clock=clock)


@pytest.fixture
def normalizer():
    return AmazonResponseNormalizer(PARTNER_TAG, today=lambda: TODAY)


@pytest.fixture
def make_routes(config, file_cache, normalizer, clock):
    def _make(client="default", limiter=None):
        if client == "default":
            client = StubClient(PaapiResult(success=True, data=search_payload(raw_item())))
        return AmazonRoutes(
            config,
            file_cache,
            client=client,
            normalizer=normalizer,
            rate_limiter=limiter or FixedWindowRateLimiter(clock_ms=clock),
            clock_ms=clock,
        )
    return _make
