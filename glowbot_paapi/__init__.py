"""Amazon Product Advertising API gateway: signing, retrying client,
normalization and a TTL cache with stale-on-error fallback."""

__version__ = "0.1.0"
