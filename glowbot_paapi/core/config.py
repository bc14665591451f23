import os
import re
from dataclasses import dataclass
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from glowbot_paapi.core.errors import ConfigurationError

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Prefer paapi.env, fallback to .env
ENV_PAAPI = os.path.join(PROJECT_ROOT, "config", "paapi.env")
ENV_DOTENV = os.path.join(PROJECT_ROOT, "config", ".env")

PAAPI_SERVICE = "ProductAdvertisingAPI"
PAAPI_TARGET_PREFIX = "com.amazon.paapi5.v1.ProductAdvertisingAPIv1"

DEFAULT_SUBTAG_PREFIX = "glowbot_"

_PARTNER_TAG_RE = re.compile(r"^[A-Za-z0-9\-]+$")


def load_env_files() -> None:
    # Legacy .env first with lower priority, paapi.env second with higher priority
    if os.path.exists(ENV_DOTENV):
        load_dotenv(ENV_DOTENV, override=False)
    if os.path.exists(ENV_PAAPI):
        load_dotenv(ENV_PAAPI, override=True)


def _str_to_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        value = int((env.get(name) or str(default)).strip())
        return value if value > 0 else default
    except ValueError:
        return default


def _env_str(env: Mapping[str, str], name: str, default: str = "") -> str:
    return (env.get(name) or default).strip()


@dataclass(frozen=True)
class PaapiConfig:
    """
    Everything the gateway needs from the environment.
    Built once by the composition root and passed down explicitly.
    """
    access_key: str = ""
    secret_key: str = ""
    partner_tag: str = ""
    region: str = "us-east-1"
    api_host: str = "webservices.amazon.com"
    marketplace: str = "www.amazon.com"
    store_domain: str = "www.amazon.com"
    subtag_prefix: str = DEFAULT_SUBTAG_PREFIX
    redis_url: str = ""
    cache_dir: str = os.path.join(PROJECT_ROOT, ".cache")
    cache_cleanup_interval_s: int = 3600
    timeout_ms: int = 8000
    max_retries: int = 3
    port: int = 5050
    trust_proxy: bool = False   # honour X-Forwarded-For for client identity
    service: str = PAAPI_SERVICE

    # ---------- Loaders ----------

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PaapiConfig":
        if env is None:
            load_env_files()
            env = os.environ

        return cls(
            access_key=_env_str(env, "AMAZON_ACCESS_KEY"),
            secret_key=_env_str(env, "AMAZON_SECRET_KEY"),
            partner_tag=_env_str(env, "AMAZON_PARTNER_TAG"),
            region=_env_str(env, "AMAZON_REGION", "us-east-1"),
            api_host=_env_str(env, "AMAZON_API_HOST", "webservices.amazon.com"),
            marketplace=_env_str(env, "AMAZON_MARKETPLACE", "www.amazon.com"),
            store_domain=_env_str(env, "AMAZON_STORE_DOMAIN", "www.amazon.com"),
            subtag_prefix=_env_str(env, "MONETIZATION_ASC_SUBTAG_PREFIX", DEFAULT_SUBTAG_PREFIX),
            redis_url=_env_str(env, "REDIS_URL"),
            cache_dir=_env_str(env, "CACHE_DIR", os.path.join(PROJECT_ROOT, ".cache")),
            cache_cleanup_interval_s=_env_int(env, "CACHE_CLEANUP_INTERVAL_SECONDS", 3600),
            timeout_ms=_env_int(env, "PAAPI_TIMEOUT_MS", 8000),
            max_retries=_env_int(env, "PAAPI_MAX_RETRIES", 3),
            port=_env_int(env, "PORT", 5050),
            trust_proxy=_str_to_bool(env.get("TRUST_PROXY"), False),
        )

    # ---------- Validation ----------

    def missing_credentials(self) -> List[str]:
        missing = []
        if not self.access_key:
            missing.append("AMAZON_ACCESS_KEY")
        if not self.secret_key:
            missing.append("AMAZON_SECRET_KEY")
        if not self.partner_tag:
            missing.append("AMAZON_PARTNER_TAG")
        return missing

    def validate(self) -> None:
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(
                "Amazon PA-API not configured; missing " + ", ".join(missing),
                missing=missing,
            )
        if not _PARTNER_TAG_RE.match(self.partner_tag):
            raise ConfigurationError(
                "AMAZON_PARTNER_TAG should contain only letters, numbers, and hyphens"
            )

    @property
    def amazon_enabled(self) -> bool:
        try:
            self.validate()
        except ConfigurationError:
            return False
        return True

    @property
    def amazon_message(self) -> str:
        try:
            self.validate()
        except ConfigurationError as exc:
            return str(exc)
        return "Amazon PA-API configured"

    @property
    def endpoint(self) -> str:
        return f"https://{self.api_host}/paapi5"

    @property
    def use_redis(self) -> bool:
        return bool(self.redis_url)
