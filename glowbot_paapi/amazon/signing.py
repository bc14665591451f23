import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from glowbot_paapi.core.config import PAAPI_SERVICE, PAAPI_TARGET_PREFIX, PaapiConfig
from glowbot_paapi.core.errors import ConfigurationError, SigningError

ALGORITHM = "AWS4-HMAC-SHA256"
DEFAULT_CONTENT_TYPE = "application/json; charset=utf-8"

# operation path segment -> PA-API operation name
_OPERATIONS = {
    "searchitems": "SearchItems",
    "getitems": "GetItems",
    "getvariations": "GetVariations",
    "getbrowsenodes": "GetBrowseNodes",
}


@dataclass
class SignedRequest:
    url: str
    headers: Dict[str, str]
    body: str = ""


def _sign(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def _sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def get_signature_key(secret_key: str, date_stamp: str, region: str, service: str) -> bytes:
    k_date = _sign(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    k_region = _sign(k_date, region)
    k_service = _sign(k_region, service)
    return _sign(k_service, "aws4_request")


def target_for_path(path: str) -> str:
    """Map `/paapi5/getitems` style paths to the X-Amz-Target value."""
    segment = (path or "").rstrip("/").rsplit("/", 1)[-1].lower()
    operation = _OPERATIONS.get(segment, "SearchItems")
    return f"{PAAPI_TARGET_PREFIX}.{operation}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AmazonSigner:
    """
    AWS Signature Version 4 for PA-API calls.

    Pure apart from reading the clock: identical inputs at the same instant
    produce a byte-identical Authorization header. Callers must sign right
    before dispatch and re-sign on every retry, since x-amz-date is part of
    the signature and PA-API rejects stale timestamps.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        region: str = "us-east-1",
        service: str = PAAPI_SERVICE,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.access_key = access_key or ""
        self.secret_key = secret_key or ""
        self.region = region or ""
        self.service = service or ""
        self._clock = clock or _utcnow

        missing = self.validate_config()
        if missing:
            raise ConfigurationError(
                "Amazon signing config incomplete: " + ", ".join(missing),
                missing=missing,
            )

    @classmethod
    def from_config(cls, config: PaapiConfig, clock: Optional[Callable[[], datetime]] = None) -> "AmazonSigner":
        return cls(config.access_key, config.secret_key, config.region, config.service, clock=clock)

    def validate_config(self) -> List[str]:
        missing = []
        if not self.access_key:
            missing.append("access key")
        if not self.secret_key:
            missing.append("secret key")
        if not self.region:
            missing.append("region")
        if not self.service:
            missing.append("service")
        return missing

    def sign_request(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: str = "",
    ) -> SignedRequest:
        try:
            parsed = urlparse(url)
        except ValueError as exc:
            raise SigningError(f"Cannot parse URL {url!r}: {exc}") from exc
        if not parsed.netloc:
            raise SigningError(f"URL has no host: {url!r}")

        # Timestamps
        t = self._clock()
        if t.tzinfo is not None:
            t = t.astimezone(timezone.utc)
        amz_date = t.strftime("%Y%m%dT%H%M%SZ")
        date_stamp = t.strftime("%Y%m%d")

        # Lower-case view of caller headers; required ones added if absent
        lowered: Dict[str, str] = {}
        for name, value in (headers or {}).items():
            if value is None:
                continue
            lowered[name.strip().lower()] = " ".join(str(value).split())
        lowered.setdefault("host", parsed.netloc)
        lowered.setdefault("x-amz-date", amz_date)
        lowered.setdefault("x-amz-target", target_for_path(parsed.path))
        lowered.setdefault("content-type", DEFAULT_CONTENT_TYPE)
        request_date = lowered["x-amz-date"]

        # Canonical request pieces
        canonical_uri = parsed.path or "/"
        canonical_querystring = parsed.query
        signed_headers_list = sorted(lowered.keys())
        canonical_headers = "".join(f"{k}:{lowered[k]}\n" for k in signed_headers_list)
        signed_headers = ";".join(signed_headers_list)
        try:
            payload_hash = _sha256_hex(body or "")
        except UnicodeEncodeError as exc:
            raise SigningError(f"Request body is not UTF-8 encodable: {exc}") from exc

        canonical_request = "\n".join([
            method.upper(),
            canonical_uri,
            canonical_querystring,
            canonical_headers,
            signed_headers,
            payload_hash,
        ])

        credential_scope = f"{date_stamp}/{self.region}/{self.service}/aws4_request"
        string_to_sign = "\n".join([
            ALGORITHM,
            request_date,
            credential_scope,
            _sha256_hex(canonical_request),
        ])

        signing_key = get_signature_key(self.secret_key, date_stamp, self.region, self.service)
        signature = hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

        out_headers = dict(lowered)
        out_headers["authorization"] = (
            f"{ALGORITHM} Credential={self.access_key}/{credential_scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        return SignedRequest(url=url, headers=out_headers, body=body or "")
