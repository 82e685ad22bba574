"""SSL utility functions."""

from sslcert.utils.helpers import (
    certificate_metadata,
    extract_private_key,
    find_issuer,
    fingerprint,
    normalize_fingerprint,
    parse_pem_chain,
    split_chain,
)

__all__ = [
    "certificate_metadata", "extract_private_key", "find_issuer", "fingerprint",
    "normalize_fingerprint", "parse_pem_chain", "split_chain",
]
