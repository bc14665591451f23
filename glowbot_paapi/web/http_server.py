import http.server
import json
import socketserver
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from glowbot_paapi.amazon.client import AmazonPAAPIClient
from glowbot_paapi.amazon.normalize import AmazonResponseNormalizer
from glowbot_paapi.cache.factory import CacheSweeper, create_cache
from glowbot_paapi.core.config import PaapiConfig
from glowbot_paapi.core.errors import ConfigurationError
from glowbot_paapi.core.log_utils import get_logger
from glowbot_paapi.web.rate_limit import RATE_LIMIT_MESSAGE, FixedWindowRateLimiter
from glowbot_paapi.web.routes import AmazonRoutes, RouteResponse, json_err

logger = get_logger(__name__)

RATE_LIMITED_PATHS = {"/search", "/items", "/variations"}


# ================= Helpers =================
def set_headers(handler, status=200, content_type="application/json", extra: Optional[Dict[str, str]] = None):
    handler.send_response(status)
    handler.send_header("Content-Type", content_type)
    handler.send_header("Access-Control-Allow-Origin", "*")
    handler.send_header("Access-Control-Allow-Methods", "GET, OPTIONS")
    handler.send_header("Access-Control-Allow-Headers", "Content-Type")
    for name, value in (extra or {}).items():
        handler.send_header(name, value)
    handler.end_headers()


def flatten_query(raw_query: str) -> Dict[str, str]:
    """First value wins for repeated params."""
    return {k: v[0] for k, v in parse_qs(raw_query, keep_blank_values=True).items() if v}


# ================= HTTP Handler =================
class Handler(http.server.BaseHTTPRequestHandler):
    server: "GatewayHTTPServer"

    def _ok(self, payload: Dict[str, Any], status: int = 200, headers: Optional[Dict[str, str]] = None):
        set_headers(self, status, extra=headers)
        self.wfile.write(json.dumps(payload, ensure_ascii=False).encode("utf-8"))

    def _send(self, response: RouteResponse):
        self._ok(response.payload, response.status, response.headers)

    def _client_id(self) -> str:
        # X-Forwarded-For is caller-controlled; only a trusted proxy may set identity
        if self.server.routes.config.trust_proxy:
            forwarded = (self.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
            if forwarded:
                return forwarded
        return self.client_address[0]

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_OPTIONS(self):
        set_headers(self)

    def do_GET(self):
        parsed = urlparse(self.path)
        path = parsed.path.rstrip("/").lower() or "/"
        query = flatten_query(parsed.query)
        routes = self.server.routes

        if path in RATE_LIMITED_PATHS:
            decision = routes.rate_limiter.hit(self._client_id())
            if not decision.allowed:
                logger.warning("Rate limit exceeded for %s on %s", self._client_id(), path)
                return self._ok(
                    json_err(RATE_LIMIT_MESSAGE, items=[]),
                    status=429,
                    headers={"Retry-After": str(decision.retry_after_s)},
                )

        try:
            if path == "/search":
                return self._send(routes.search(query))
            if path == "/items":
                return self._send(routes.items(query))
            if path == "/variations":
                return self._send(routes.variations(query))
            if path == "/health":
                return self._send(routes.health())
            if path == "/status":
                return self._send(routes.status())
        except Exception:
            logger.exception("Unhandled error on %s", path)
            return self._ok(
                json_err("Internal server error", items=[], notice="Search temporarily unavailable; try again."),
                status=500,
            )

        return self._ok(json_err("Not found"), status=404)

# ================= END HTTP Handler =================


# ================= Server Runner =================
class GatewayHTTPServer(socketserver.ThreadingMixIn, http.server.HTTPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, server_address: Tuple[str, int], routes: AmazonRoutes):
        super().__init__(server_address, Handler)
        self.routes = routes


def build_routes(config: PaapiConfig) -> AmazonRoutes:
    """Composition root: every collaborator is constructed here and injected."""
    cache = create_cache(config)
    client = None
    try:
        client = AmazonPAAPIClient(config)
    except ConfigurationError as exc:
        logger.warning("Amazon PA-API disabled: %s", exc)
    normalizer = AmazonResponseNormalizer.from_config(config)
    return AmazonRoutes(config, cache, client=client, normalizer=normalizer, rate_limiter=FixedWindowRateLimiter())


def make_server(routes: AmazonRoutes, host: str = "", port: int = 5050) -> GatewayHTTPServer:
    return GatewayHTTPServer((host, port), routes)


def run_server(config: Optional[PaapiConfig] = None, host: str = "", port: Optional[int] = None) -> None:
    config = config or PaapiConfig.from_env()
    routes = build_routes(config)
    sweeper = CacheSweeper(routes.cache, config.cache_cleanup_interval_s)
    sweeper.start()
    port = port or config.port

    with make_server(routes, host, port) as httpd:
        logger.info("PA-API gateway running on http://127.0.0.1:%s", port)
        logger.info("Endpoints: GET /search, GET /items, GET /variations, GET /health, GET /status")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutting down")
        finally:
            sweeper.stop()


# ================= Entry Point =================
if __name__ == "__main__":
    run_server()
