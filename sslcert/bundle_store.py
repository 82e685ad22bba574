"""Certificate bundle store: issued files per connection and per environment."""

import json
import logging
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sslcert.utils.helpers import certificate_metadata, parse_pem_chain, split_chain

logger = logging.getLogger(__name__)

STAGING = "staging"
PRODUCTION = "production"

_ENV_DIRS = {STAGING: "staging", PRODUCTION: "prod"}

# Download kind → file name inside the environment directory
BUNDLE_FILES = {
    "certificate": "certificate.pem",
    "private_key": "private_key.pem",
    "fullchain": "fullchain.pem",
    "chain": "chain.pem",
    "intermediate": "intermediate.crt",
    "root": "root.crt",
    "ca_bundle": "ca-bundle.crt",
    "csr": "certificate.csr",
}


@dataclass
class CertificateBundle:
    """An issued certificate with its key, chain and metadata."""

    certificate: str
    fullchain: str
    private_key: str = ""
    intermediates: list[str] = field(default_factory=list)
    root: str = ""
    csr: str = ""
    fqdn: str = ""
    environment: str = STAGING
    metadata: dict = field(default_factory=dict)

    @property
    def chain(self) -> str:
        """CA certificates only (intermediates then root)."""
        return "".join(self.intermediates) + self.root

    @property
    def ca_certificates(self) -> list[str]:
        return list(self.intermediates) + ([self.root] if self.root else [])

    @property
    def expires_at(self) -> Optional[datetime]:
        value = self.metadata.get("expires_at")
        return datetime.fromisoformat(value) if value else None

    @property
    def issued_at(self) -> Optional[datetime]:
        value = self.metadata.get("issued_at")
        return datetime.fromisoformat(value) if value else None

    @property
    def serial(self) -> str:
        return self.metadata.get("serial", "")

    @classmethod
    def from_fullchain(cls, fullchain_pem: str, private_key: str = "", csr: str = "",
                       fqdn: str = "", environment: str = STAGING,
                       roots=()) -> "CertificateBundle":
        """Build a bundle from the issued chain.

        ``fullchain`` keeps the certificates as issued; a root found in
        ``roots`` only lands in ``root`` and the CA files.
        """
        leaf, intermediates, root = split_chain(fullchain_pem, roots)
        return cls(
            certificate=leaf,
            fullchain="".join(parse_pem_chain(fullchain_pem)),
            private_key=private_key,
            intermediates=intermediates,
            root=root,
            csr=csr,
            fqdn=fqdn,
            environment=environment,
            metadata=certificate_metadata(leaf),
        )


def _safe_component(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_.-]", "_", str(value))
    if not cleaned.strip("."):
        raise ValueError(f"Invalid path component: {value!r}")
    return cleaned


class CertificateBundleStore:
    """Writes and reads bundles under ``<root>/connection-<id>/<staging|prod>/``.

    Each connection gets its own directory so re-issuance or failure for one
    connection never touches another's files.
    """

    def __init__(self, root_dir: str | Path):
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self._log_lock = threading.Lock()

    # ── Paths ────────────────────────────────────────────────────

    def connection_dir(self, connection_id: str) -> Path:
        return self.root / f"connection-{_safe_component(connection_id)}"

    def env_dir(self, connection_id: str, environment: str) -> Path:
        if environment not in _ENV_DIRS:
            raise ValueError(f"Unknown environment: {environment}")
        return self.connection_dir(connection_id) / _ENV_DIRS[environment]

    def account_dir(self, environment: str) -> Path:
        """Directory holding ACME account keys for an environment."""
        path = self.root / "_accounts" / _ENV_DIRS[environment]
        path.mkdir(parents=True, exist_ok=True)
        return path

    def file_path(self, connection_id: str, environment: str, kind: str) -> Optional[Path]:
        """Path of a persisted bundle file, or None when unknown/missing."""
        name = BUNDLE_FILES.get(kind)
        if name is None:
            return None
        path = self.env_dir(connection_id, environment) / name
        return path if path.exists() else None

    # ── Writes ───────────────────────────────────────────────────

    def pending_dir(self, connection_id: str, environment: str) -> Path:
        """Holds the CSR and key of a renewal that has not been issued yet."""
        return self.env_dir(connection_id, environment) / "pending"

    def save_csr(self, connection_id: str, environment: str, csr_pem: str,
                 private_key_pem: str = "") -> Path:
        """Stage a new CSR and key without touching the installed bundle."""
        directory = self.pending_dir(connection_id, environment)
        directory.mkdir(parents=True, exist_ok=True)
        (directory / BUNDLE_FILES["csr"]).write_text(csr_pem)
        key_path = directory / BUNDLE_FILES["private_key"]
        if private_key_pem:
            self._write_key(key_path, private_key_pem)
        elif key_path.exists():
            key_path.unlink()
        return directory

    def discard_pending(self, connection_id: str, environment: str) -> None:
        directory = self.pending_dir(connection_id, environment)
        if not directory.is_dir():
            return
        for path in directory.iterdir():
            path.unlink()
        directory.rmdir()

    def save_bundle(self, connection_id: str, bundle: CertificateBundle) -> Path:
        """Persist every file of ``bundle``; returns the environment directory."""
        directory = self.env_dir(connection_id, bundle.environment)
        directory.mkdir(parents=True, exist_ok=True)

        (directory / BUNDLE_FILES["certificate"]).write_text(bundle.certificate)
        (directory / BUNDLE_FILES["fullchain"]).write_text(bundle.fullchain)
        (directory / BUNDLE_FILES["chain"]).write_text(bundle.chain)
        (directory / BUNDLE_FILES["intermediate"]).write_text("".join(bundle.intermediates))
        (directory / BUNDLE_FILES["ca_bundle"]).write_text(bundle.chain)
        if bundle.root:
            (directory / BUNDLE_FILES["root"]).write_text(bundle.root)
        else:
            (directory / BUNDLE_FILES["root"]).unlink(missing_ok=True)
        if bundle.csr:
            (directory / BUNDLE_FILES["csr"]).write_text(bundle.csr)
        if bundle.private_key:
            self._write_key(directory / BUNDLE_FILES["private_key"], bundle.private_key)
        else:
            # Key held by the target; a previous local key no longer matches
            (directory / BUNDLE_FILES["private_key"]).unlink(missing_ok=True)
        if bundle.fqdn:
            name = _safe_component(bundle.fqdn.replace("*", "wildcard"))
            (directory / f"{name}.crt").write_text(bundle.certificate)
            if bundle.private_key:
                self._write_key(directory / f"{name}.key", bundle.private_key)

        meta = dict(bundle.metadata)
        meta.update({
            "fqdn": bundle.fqdn,
            "environment": bundle.environment,
            "saved_at": datetime.now(timezone.utc).isoformat(),
        })
        (directory / "metadata.json").write_text(json.dumps(meta, indent=2))
        self.discard_pending(connection_id, bundle.environment)
        logger.info("Saved certificate bundle for connection %s in %s", connection_id, directory)
        return directory

    @staticmethod
    def _write_key(path: Path, pem: str) -> None:
        path.write_text(pem)
        try:
            os.chmod(path, 0o600)
        except OSError:
            logger.warning("Could not restrict permissions on %s", path)

    # ── Reads ────────────────────────────────────────────────────

    def load_private_key(self, connection_id: str, environment: str) -> str:
        path = self.env_dir(connection_id, environment) / BUNDLE_FILES["private_key"]
        return path.read_text() if path.exists() else ""

    def load_bundle(self, connection_id: str, environment: str) -> Optional[CertificateBundle]:
        directory = self.env_dir(connection_id, environment)
        fullchain_path = directory / BUNDLE_FILES["fullchain"]
        if not fullchain_path.exists():
            return None

        def _read(kind):
            path = directory / BUNDLE_FILES[kind]
            return path.read_text() if path.exists() else ""

        meta_path = directory / "metadata.json"
        meta = json.loads(meta_path.read_text()) if meta_path.exists() else {}
        root = _read("root")
        return CertificateBundle.from_fullchain(
            fullchain_path.read_text(),
            private_key=_read("private_key"),
            csr=_read("csr"),
            fqdn=meta.get("fqdn", ""),
            environment=environment,
            roots=[root] if root else (),
        )

    def list_files(self, connection_id: str, environment: str) -> list[str]:
        return [kind for kind in BUNDLE_FILES if self.file_path(connection_id, environment, kind)]

    # ── Renewal log ──────────────────────────────────────────────

    def append_log(self, connection_id: str, line: str) -> None:
        directory = self.connection_dir(connection_id)
        directory.mkdir(parents=True, exist_ok=True)
        with self._log_lock:
            with open(directory / "renewal.log", "a", encoding="utf-8") as fh:
                fh.write(line.rstrip("\n") + "\n")

    def read_log(self, connection_id: str, tail: int = 200) -> list[str]:
        path = self.connection_dir(connection_id) / "renewal.log"
        if not path.exists():
            return []
        return path.read_text(encoding="utf-8").splitlines()[-tail:]
