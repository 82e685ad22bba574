"""Local copies of issuer root certificates.

ACME servers return the leaf and intermediates only. Appliances that
validate the whole chain (ISE, VOS tomcat-trust) also need the root, so the
Let's Encrypt roots are kept on disk and matched to issued chains.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import requests

from sslcert.utils.helpers import parse_pem_chain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RootCertificate:
    name: str
    url: str
    filename: str


ROOT_CERTIFICATES = (
    RootCertificate("ISRG Root X1", "https://letsencrypt.org/certs/isrgrootx1.pem",
                    "isrgrootx1.pem"),
    RootCertificate("ISRG Root X2", "https://letsencrypt.org/certs/isrg-root-x2.pem",
                    "isrg-root-x2.pem"),
)

# Expired September 2025, replaced by the self-signed X2 root
DEPRECATED_FILES = ("isrg-root-x2-cross-signed.pem",)


class RootCertificateStore:
    """Directory of trusted root PEMs, filled from the issuer on first use.

    Any other ``*.pem`` placed in the directory (for example a private
    issuer's root) is offered as a candidate too.
    """

    def __init__(self, directory: str | Path, auto_download: bool = True, timeout: int = 30,
                 certificates=ROOT_CERTIFICATES):
        self.directory = Path(directory)
        self.auto_download = auto_download
        self.timeout = timeout
        self.certificates = certificates

    def missing(self) -> list[RootCertificate]:
        return [c for c in self.certificates if not (self.directory / c.filename).exists()]

    def download_missing(self) -> list[str]:
        """Fetch roots not yet on disk; returns the names downloaded.

        A failed download is logged and skipped so the others still land.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        for filename in DEPRECATED_FILES:
            stale = self.directory / filename
            if stale.exists():
                stale.unlink()
                logger.info("Removed deprecated root certificate %s", filename)

        downloaded = []
        for cert in self.missing():
            logger.info("Downloading %s from %s", cert.name, cert.url)
            try:
                response = requests.get(cert.url, timeout=self.timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                logger.error("Failed to download %s: %s", cert.name, e)
                continue
            if not parse_pem_chain(response.text):
                logger.error("Download of %s did not contain a PEM certificate", cert.name)
                continue
            (self.directory / cert.filename).write_text(response.text)
            downloaded.append(cert.name)
        return downloaded

    def roots(self) -> list[str]:
        """Every root PEM available locally, downloading missing ones first."""
        if self.auto_download and self.missing():
            try:
                self.download_missing()
            except OSError as e:
                logger.error("Could not store root certificates in %s: %s", self.directory, e)
        if not self.directory.is_dir():
            return []
        pems = []
        for path in sorted(self.directory.glob("*.pem")):
            pems.extend(parse_pem_chain(path.read_text()))
        return pems
