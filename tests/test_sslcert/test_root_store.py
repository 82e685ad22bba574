"""Tests for the local issuer root certificate store."""

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from sslcert.root_store import ROOT_CERTIFICATES, RootCertificateStore


def _root(cn):
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name).issuer_name(name)
        .public_key(key.public_key()).serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1)).not_valid_after(now + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode()


X1, X2 = _root("ISRG Root X1"), _root("ISRG Root X2")


def _response(text, status=200):
    response = MagicMock()
    response.text = text
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"HTTP {status}")
    return response


@patch("sslcert.root_store.requests.get")
class TestRootCertificateStore(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.directory = Path(self.tmp.name) / "roots"

    def tearDown(self):
        self.tmp.cleanup()

    def test_downloads_missing_roots(self, get):
        get.side_effect = [_response(X1), _response(X2)]
        store = RootCertificateStore(self.directory)
        self.assertCountEqual(store.roots(), [X1, X2])
        self.assertEqual([c.args[0] for c in get.call_args_list],
                         [c.url for c in ROOT_CERTIFICATES])
        self.assertEqual(store.missing(), [])

    def test_existing_roots_not_downloaded_again(self, get):
        self.directory.mkdir()
        for cert, pem in zip(ROOT_CERTIFICATES, (X1, X2)):
            (self.directory / cert.filename).write_text(pem)
        self.assertEqual(len(RootCertificateStore(self.directory).roots()), 2)
        get.assert_not_called()

    def test_failed_download_skipped(self, get):
        get.side_effect = [_response("", status=503), _response(X2)]
        store = RootCertificateStore(self.directory)
        self.assertEqual(store.download_missing(), ["ISRG Root X2"])
        self.assertEqual([c.name for c in store.missing()], ["ISRG Root X1"])

    def test_non_pem_response_rejected(self, get):
        get.return_value = _response("<html>maintenance</html>")
        store = RootCertificateStore(self.directory)
        self.assertEqual(store.download_missing(), [])
        self.assertEqual(store.roots(), [])

    def test_network_error_logged(self, get):
        get.side_effect = requests.ConnectionError("offline")
        self.assertEqual(RootCertificateStore(self.directory).roots(), [])

    def test_no_download_when_disabled(self, get):
        store = RootCertificateStore(self.directory, auto_download=False)
        self.assertEqual(store.roots(), [])
        get.assert_not_called()

    def test_deprecated_file_removed(self, get):
        get.side_effect = [_response(X1), _response(X2)]
        self.directory.mkdir()
        stale = self.directory / "isrg-root-x2-cross-signed.pem"
        stale.write_text(X2)
        RootCertificateStore(self.directory).download_missing()
        self.assertFalse(stale.exists())

    def test_private_root_offered(self, get):
        self.directory.mkdir()
        private = _root("Corp Root")
        (self.directory / "corp-root.pem").write_text(private)
        store = RootCertificateStore(self.directory, auto_download=False)
        self.assertEqual(store.roots(), [private])


if __name__ == "__main__":
    unittest.main()
