from glowbot_paapi.amazon.client import AmazonPAAPIClient, PaapiResult
from glowbot_paapi.amazon.normalize import AmazonResponseNormalizer, AscSubtagConfig, NormalizedItem
from glowbot_paapi.amazon.signing import AmazonSigner, SignedRequest

__all__ = [
    "AmazonPAAPIClient",
    "PaapiResult",
    "AmazonResponseNormalizer",
    "AscSubtagConfig",
    "NormalizedItem",
    "AmazonSigner",
    "SignedRequest",
]
