"""Local private key and CSR generation for targets that do not build their own."""

import logging
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from renewal.connection import CSR_PATTERN

logger = logging.getLogger(__name__)


@dataclass
class CsrMaterial:
    """CSR plus the private key when it is held locally."""

    csr_pem: str
    private_key_pem: str = ""
    source: str = "local"  # local / target / supplied


def generate_csr(identifiers: list[str], key_size: int = 2048) -> CsrMaterial:
    """Generate an RSA key and a CSR whose CN is the first identifier."""
    if not identifiers:
        raise ValueError("At least one identifier is required")
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    builder = x509.CertificateSigningRequestBuilder().subject_name(
        x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, identifiers[0])])
    ).add_extension(
        x509.SubjectAlternativeName([x509.DNSName(name) for name in identifiers]),
        critical=False,
    )
    csr = builder.sign(key, hashes.SHA256())
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    logger.info("Generated %d-bit RSA key and CSR for %s", key_size, identifiers[0])
    return CsrMaterial(
        csr_pem=csr.public_bytes(serialization.Encoding.PEM).decode(),
        private_key_pem=key_pem,
        source="local",
    )


def extract_csr(text: str) -> str:
    """Return the PEM CSR block from ``text`` (empty when absent)."""
    match = CSR_PATTERN.search(text or "")
    return match.group(0).strip() + "\n" if match else ""


def csr_names(csr_pem: str) -> list[str]:
    """Common name and SAN DNS names requested by a CSR."""
    csr = x509.load_pem_x509_csr(csr_pem.encode())
    names = [a.value for a in csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        for name in san.value.get_values_for_type(x509.DNSName):
            if name not in names:
                names.append(name)
    except x509.ExtensionNotFound:
        pass
    return names
