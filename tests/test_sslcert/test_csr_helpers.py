"""Tests for CSR generation and PEM helpers."""

import unittest
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from sslcert.csr import csr_names, extract_csr, generate_csr
from sslcert.utils.helpers import (
    extract_private_key,
    find_issuer,
    fingerprint,
    normalize_fingerprint,
    parse_pem_chain,
    split_chain,
)


def _cert(subject, issuer, key, signing_key):
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, subject)]))
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer)]))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(signing_key, hashes.SHA256())
        .public_bytes(serialization.Encoding.PEM)
        .decode()
    )


_root_key, _inter_key, _leaf_key = (ec.generate_private_key(ec.SECP256R1()) for _ in range(3))
FULLCHAIN = (
    _cert("leaf.example.com", "Intermediate", _leaf_key, _inter_key)
    + _cert("Intermediate", "Root", _inter_key, _root_key)
    + _cert("Root", "Root", _root_key, _root_key)
)
KEY = _leaf_key.private_bytes(
    serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()
).decode()
_other_key = ec.generate_private_key(ec.SECP256R1())
OTHER_ROOT = _cert("Other Root", "Other Root", _other_key, _other_key)


class TestCsr(unittest.TestCase):

    def test_generate_csr_names(self):
        material = generate_csr(["www.example.com", "api.example.com"])
        self.assertEqual(material.source, "local")
        self.assertIn("BEGIN CERTIFICATE REQUEST", material.csr_pem)
        self.assertIn("BEGIN PRIVATE KEY", material.private_key_pem)
        self.assertEqual(csr_names(material.csr_pem), ["www.example.com", "api.example.com"])

    def test_generate_csr_requires_identifier(self):
        with self.assertRaises(ValueError):
            generate_csr([])

    def test_extract_csr_from_surrounding_text(self):
        material = generate_csr(["www.example.com"])
        text = "notes\n" + material.csr_pem + "\ntrailer"
        self.assertEqual(extract_csr(text), material.csr_pem.strip() + "\n")
        self.assertEqual(extract_csr("nothing"), "")


class TestHelpers(unittest.TestCase):

    def test_parse_pem_chain(self):
        self.assertEqual(len(parse_pem_chain(FULLCHAIN)), 3)
        self.assertEqual(parse_pem_chain(""), [])

    def test_split_chain_detects_root(self):
        leaf, intermediates, root = split_chain(FULLCHAIN)
        self.assertEqual(len(intermediates), 1)
        self.assertTrue(root)

    def test_split_chain_without_root(self):
        certs = parse_pem_chain(FULLCHAIN)
        leaf, intermediates, root = split_chain(certs[0] + certs[1])
        self.assertEqual(intermediates, [certs[1]])
        self.assertEqual(root, "")

    def test_split_chain_resolves_root_from_candidates(self):
        certs = parse_pem_chain(FULLCHAIN)
        leaf, intermediates, root = split_chain(certs[0] + certs[1], roots=[OTHER_ROOT, certs[2]])
        self.assertEqual(intermediates, [certs[1]])
        self.assertEqual(root, certs[2])

    def test_find_issuer_checks_signature(self):
        certs = parse_pem_chain(FULLCHAIN)
        # Same subject name, different key
        impostor = _cert("Root", "Root", _other_key, _other_key)
        self.assertEqual(find_issuer(certs[1], [impostor, OTHER_ROOT]), "")
        self.assertEqual(find_issuer(certs[1], [impostor, certs[2]]), certs[2])
        self.assertEqual(find_issuer(certs[1], []), "")

    def test_fingerprint_format(self):
        fp = fingerprint(parse_pem_chain(FULLCHAIN)[0])
        self.assertEqual(len(fp.split(":")), 32)
        self.assertEqual(fp, fp.upper())

    def test_fingerprint_invalid_pem(self):
        self.assertIsNone(fingerprint("-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----"))

    def test_normalize_fingerprint(self):
        self.assertEqual(normalize_fingerprint("AB:cd:01"), "abcd01")

    def test_extract_private_key(self):
        self.assertEqual(extract_private_key("x\n" + KEY + "y"), KEY.strip() + "\n")
        self.assertEqual(extract_private_key(""), "")


if __name__ == "__main__":
    unittest.main()
