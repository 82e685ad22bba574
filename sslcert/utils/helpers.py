"""SSL helper utilities."""

import hashlib
import re
from datetime import timezone
from typing import Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

PEM_PATTERN = re.compile(
    r"-----BEGIN CERTIFICATE-----\s+.+?\s+-----END CERTIFICATE-----",
    re.DOTALL,
)

PRIVATE_KEY_PATTERN = re.compile(
    r"-----BEGIN (?:RSA |EC |ENCRYPTED )?PRIVATE KEY-----[\s\S]+?"
    r"-----END (?:RSA |EC |ENCRYPTED )?PRIVATE KEY-----"
)


def parse_pem_chain(pem_text: str) -> list[str]:
    """Split a PEM bundle into individual certificate strings.

    Args:
        pem_text: PEM-encoded text potentially containing multiple certs.

    Returns:
        List of individual PEM certificate strings.
    """
    return [pem.strip() + "\n" for pem in PEM_PATTERN.findall(pem_text or "")]


def load_certificate(pem: str) -> x509.Certificate:
    return x509.load_pem_x509_certificate(pem.encode())


def is_self_signed(pem: str) -> bool:
    cert = load_certificate(pem)
    return cert.issuer == cert.subject


def find_issuer(pem: str, candidates) -> str:
    """Return the candidate PEM that issued ``pem`` (empty when none did).

    A candidate matches when its subject is the certificate's issuer and
    its key verifies the certificate's signature.
    """
    cert = load_certificate(pem)
    for candidate in candidates:
        try:
            issuer = load_certificate(candidate)
        except ValueError:
            continue
        if issuer.subject != cert.issuer:
            continue
        try:
            cert.verify_directly_issued_by(issuer)
        except (ValueError, TypeError, InvalidSignature):
            continue
        return candidate.strip() + "\n"
    return ""


def split_chain(fullchain_pem: str, roots=()) -> tuple[str, list[str], str]:
    """Split a full chain into (leaf, intermediates, root).

    ACME chains usually stop at the intermediate. When the issuer did not
    include a self-signed certificate, the root is looked up in ``roots``
    by the last certificate's issuer.
    """
    certs = parse_pem_chain(fullchain_pem)
    if not certs:
        raise ValueError("No certificates found in chain")
    leaf, rest = certs[0], certs[1:]
    if rest and is_self_signed(rest[-1]):
        return leaf, rest[:-1], rest[-1]
    top = rest[-1] if rest else leaf
    return leaf, rest, find_issuer(top, roots)


def fingerprint(pem: str, algorithm: str = "sha256") -> Optional[str]:
    """Compute the fingerprint of a PEM certificate over its DER encoding.

    Args:
        pem: PEM certificate text.
        algorithm: Hash algorithm (sha256, sha1, md5).

    Returns:
        Uppercase colon-separated hex fingerprint, or None on parse error.
    """
    try:
        der = load_certificate(pem).public_bytes(serialization.Encoding.DER)
        h = hashlib.new(algorithm)
        h.update(der)
        digest = h.hexdigest()
    except ValueError:
        return None
    # Format as colon-separated pairs
    return ":".join(digest[i:i+2].upper() for i in range(0, len(digest), 2))


def normalize_fingerprint(value: str) -> str:
    """Strip separators/case so fingerprints from different APIs compare equal."""
    return re.sub(r"[^0-9a-f]", "", (value or "").lower())


def certificate_metadata(pem: str) -> dict:
    """Issuance metadata for a PEM certificate."""
    cert = load_certificate(pem)

    def _cn(name: x509.Name) -> str:
        attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
        return attrs[0].value if attrs else name.rfc4514_string()

    try:
        san_ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        san = san_ext.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        san = []

    return {
        "subject": _cn(cert.subject),
        "issuer": _cn(cert.issuer),
        "serial": format(cert.serial_number, "X"),
        "issued_at": cert.not_valid_before_utc.astimezone(timezone.utc).isoformat(),
        "expires_at": cert.not_valid_after_utc.astimezone(timezone.utc).isoformat(),
        "san": san,
        "fingerprint_sha256": fingerprint(pem),
    }


def extract_private_key(text: str) -> str:
    """Return the first PEM private key block in ``text`` (empty when absent)."""
    match = PRIVATE_KEY_PATTERN.search(text or "")
    return match.group(0).strip() + "\n" if match else ""
