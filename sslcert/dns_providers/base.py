"""DNS-01 challenge provider interface."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sslcert.dns_providers.propagation import PropagationChecker

logger = logging.getLogger(__name__)

ACME_CHALLENGE_LABEL = "_acme-challenge"


def challenge_record_name(domain: str) -> str:
    """``_acme-challenge.<domain>``; wildcard names validate on their base domain."""
    domain = domain.strip().rstrip(".").lower()
    if domain.startswith("*."):
        domain = domain[2:]
    return f"{ACME_CHALLENGE_LABEL}.{domain}"


def relative_name(fqdn: str, zone: str) -> str:
    """Record name relative to ``zone`` (``@`` for the apex)."""
    fqdn = fqdn.lower().rstrip(".")
    zone = zone.lower().rstrip(".")
    if fqdn == zone:
        return "@"
    if fqdn.endswith("." + zone):
        return fqdn[: -(len(zone) + 1)]
    return fqdn


def candidate_zones(name: str) -> list[str]:
    """Parent domains of ``name``, longest first, never a bare TLD."""
    labels = name.lower().rstrip(".").split(".")
    return [".".join(labels[i:]) for i in range(len(labels) - 1)]


@dataclass
class ChallengeRecord:
    """A TXT record created (or requested) for one DNS-01 challenge."""

    domain: str
    name: str
    value: str
    provider: str
    record_id: str = ""
    zone: str = ""

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "name": self.name,
            "value": self.value,
            "provider": self.provider,
            "record_id": self.record_id,
            "zone": self.zone,
        }


class DnsChallengeProvider(ABC):
    """Creates, removes and checks DNS-01 validation records.

    Provider API failures surface as ``DNSProviderError`` so the orchestrator
    can retry them; everything else propagates unchanged.
    """

    name = ""
    is_manual = False

    def __init__(self, checker: Optional[PropagationChecker] = None):
        self.checker = checker or PropagationChecker()

    @abstractmethod
    def create_challenge(self, domain: str, value: str) -> ChallengeRecord:
        """Publish ``value`` under ``_acme-challenge.<domain>``."""

    @abstractmethod
    def delete_challenge(self, record: ChallengeRecord) -> None:
        """Remove exactly the value this provider published for ``record``."""

    def check_propagated(self, record: ChallengeRecord) -> bool:
        """True once public resolvers return ``record.value``."""
        return self.checker.has_txt_value(record.name, record.value)

    def instructions(self, record: ChallengeRecord) -> str:
        return ""
