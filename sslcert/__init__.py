"""
SSL Certificate Module.

Provides CSR generation, ACME issuance, DNS-01 challenge providers,
deployment adapters and the per-connection certificate bundle store.
"""

from sslcert.bundle_store import CertificateBundle, CertificateBundleStore
from sslcert.csr import CsrMaterial, generate_csr

__all__ = [
    "CertificateBundle", "CertificateBundleStore", "CsrMaterial", "generate_csr",
]
