"""Connection data model: one managed certificate target and its renewal settings."""

import json
import re
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from renewal.errors import ValidationError


class ApplicationType(str, Enum):
    """Class of system that receives the certificate."""

    VOS = "vos"            # Cisco voice/collaboration (platform management API)
    ISE = "ise"            # Cisco Identity Services Engine
    GENERAL = "general"    # Any SSH/SFTP reachable host, or manual download


class SslProvider(str, Enum):
    LETSENCRYPT = "letsencrypt"
    ZEROSSL = "zerossl"


class DnsProviderName(str, Enum):
    CLOUDFLARE = "cloudflare"
    ROUTE53 = "route53"
    AZURE = "azure"
    GOOGLE = "google"
    DIGITALOCEAN = "digitalocean"
    CUSTOM = "custom"


class DnsChallengeMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


ISE_SUBTYPES = (
    "multi_use", "admin", "eap", "guest", "portal", "saml", "pxgrid", "ims", "dtls",
)

CSR_PATTERN = re.compile(
    r"-----BEGIN CERTIFICATE REQUEST-----[\s\S]*?-----END CERTIFICATE REQUEST-----"
)

_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")


def is_valid_dns_name(name: str, allow_wildcard: bool = True) -> bool:
    """Check a hostname; ``*`` is only accepted as the whole left-most label."""
    name = name.strip().rstrip(".")
    if not name or len(name) > 253:
        return False
    labels = name.split(".")
    if allow_wildcard and labels[0] == "*":
        labels = labels[1:]
        if len(labels) < 2:
            return False
    return all(_LABEL.match(label) for label in labels)


def split_csv(value: str) -> list[str]:
    """Split a comma-separated field, dropping blanks."""
    return [part.strip() for part in (value or "").split(",") if part.strip()]


@dataclass
class Connection:
    """A managed certificate target."""

    # Identity
    name: str
    application_type: ApplicationType = ApplicationType.GENERAL
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    # Addressing
    hostname: str = ""
    domain: str = ""
    alt_names: str = ""              # comma-separated

    # Credentials
    username: str = ""
    password: str = ""

    # Issuance
    ssl_provider: SslProvider = SslProvider.LETSENCRYPT
    dns_provider: DnsProviderName = DnsProviderName.CLOUDFLARE
    dns_challenge_mode: DnsChallengeMode = DnsChallengeMode.AUTO
    custom_csr: str = ""
    general_private_key: str = ""

    # ISE
    ise_nodes: str = ""              # comma-separated
    ise_application_subtype: str = "multi_use"
    ise_private_key: str = ""
    ise_cert_import_config: str = ""  # JSON object

    # Remote shell / SFTP
    enable_ssh: bool = False
    auto_restart_service: bool = False
    ssh_cert_path: str = ""
    ssh_key_path: str = ""
    ssh_chain_path: str = ""
    ssh_restart_command: str = ""

    # Renewal state
    is_enabled: bool = True
    auto_renew: bool = False
    auto_renew_status: str = ""      # success / failed / cancelled / in_progress
    auto_renew_last_attempt: Optional[datetime] = None
    last_cert_issued: Optional[datetime] = None
    cert_expires_at: Optional[datetime] = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # ---- Derived values ----

    @property
    def is_manual_dns(self) -> bool:
        return (
            self.dns_provider == DnsProviderName.CUSTOM
            or self.dns_challenge_mode == DnsChallengeMode.MANUAL
        )

    @property
    def fqdn(self) -> str:
        """Primary certificate name derived from hostname/domain per target type."""
        hostname = self.hostname.strip()
        domain = self.domain.strip()

        if self.application_type == ApplicationType.ISE:
            if hostname == "*":
                return domain
            if "." in hostname:
                return hostname
            if hostname and domain:
                return f"{hostname}.{domain}"
            nodes = split_csv(self.ise_nodes)
            if nodes:
                return nodes[0]
            return domain

        if self.application_type == ApplicationType.GENERAL:
            if not hostname or hostname == "*":
                return domain
            return f"{hostname}.{domain}" if domain else hostname

        if not hostname or not domain:
            raise ValidationError("Hostname and domain are required for VOS applications")
        return f"{hostname}.{domain}"

    @property
    def identifiers(self) -> list[str]:
        """FQDN followed by each distinct alt name."""
        names = [self.fqdn]
        for alt in split_csv(self.alt_names):
            if alt.lower() not in (n.lower() for n in names):
                names.append(alt)
        return names

    @property
    def days_until_expiry(self) -> Optional[int]:
        if self.cert_expires_at is None:
            return None
        return (self.cert_expires_at - datetime.now(timezone.utc)).days

    def import_config(self) -> dict:
        """Parsed ``ise_cert_import_config`` (empty dict when unset)."""
        if not self.ise_cert_import_config.strip():
            return {}
        data = json.loads(self.ise_cert_import_config)
        if not isinstance(data, dict):
            raise ValueError("import config must be a JSON object")
        return data

    # ---- Serialization ----

    def to_dict(self) -> dict:
        """Serialize connection to dictionary."""
        def fmt_dt(dt):
            return dt.isoformat() if dt else None

        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = fmt_dt(value)
            data[f.name] = value
        return data

    def to_public_dict(self) -> dict:
        """Serialization with secrets removed, for API responses."""
        data = self.to_dict()
        for key in ("password", "general_private_key", "ise_private_key"):
            if data.get(key):
                data[key] = "********"
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Connection":
        """Deserialize connection from dictionary."""
        def parse_dt(val):
            if not val:
                return None
            if isinstance(val, datetime):
                return val
            return datetime.fromisoformat(val)

        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["id"] = str(data.get("id") or uuid.uuid4().hex[:12])
        kwargs["name"] = data.get("name", "")
        kwargs["application_type"] = ApplicationType(data.get("application_type", "general"))
        kwargs["ssl_provider"] = SslProvider(data.get("ssl_provider") or "letsencrypt")
        kwargs["dns_provider"] = DnsProviderName(data.get("dns_provider") or "cloudflare")
        kwargs["dns_challenge_mode"] = DnsChallengeMode(data.get("dns_challenge_mode") or "auto")
        for key in ("auto_renew_last_attempt", "last_cert_issued", "cert_expires_at"):
            kwargs[key] = parse_dt(data.get(key))
        kwargs["created_at"] = parse_dt(data.get("created_at")) or datetime.now(timezone.utc)
        kwargs["updated_at"] = parse_dt(data.get("updated_at")) or datetime.now(timezone.utc)
        for key in ("enable_ssh", "auto_restart_service", "is_enabled", "auto_renew"):
            if key in data:
                kwargs[key] = _as_bool(data[key])
        return cls(**kwargs)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def validate_connection(connection: Connection) -> None:
    """Raise ValidationError when the connection cannot be renewed as configured."""
    errors = []

    try:
        fqdn = connection.fqdn
    except ValidationError as exc:
        errors.append(str(exc))
        fqdn = ""
    if not errors and not fqdn:
        errors.append("Cannot determine certificate name: hostname/domain missing")
    elif fqdn and not is_valid_dns_name(fqdn):
        errors.append(f"Certificate name {fqdn!r} is not a valid DNS name")

    for alt in split_csv(connection.alt_names):
        if not is_valid_dns_name(alt):
            errors.append(f"Alt name {alt!r} must be a valid FQDN")

    if connection.application_type in (ApplicationType.VOS, ApplicationType.ISE):
        if not connection.username or not connection.password:
            errors.append("Username and password are required for this application type")

    if connection.application_type == ApplicationType.ISE:
        if not split_csv(connection.ise_nodes):
            errors.append("ISE nodes must be configured")
        if connection.ise_application_subtype and connection.ise_application_subtype not in ISE_SUBTYPES:
            errors.append(f"Unknown ISE certificate usage {connection.ise_application_subtype!r}")
        try:
            connection.import_config()
        except ValueError as exc:
            errors.append(f"Invalid ISE import configuration: {exc}")

    if connection.custom_csr.strip() and not CSR_PATTERN.search(connection.custom_csr):
        errors.append("Valid CSR not found in custom CSR field")

    if errors:
        raise ValidationError("; ".join(errors), details={"errors": errors})
