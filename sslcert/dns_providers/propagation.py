"""TXT record lookups against public resolvers for DNS-01 propagation checks."""

import logging
from typing import Optional

import dns.exception
import dns.resolver

logger = logging.getLogger(__name__)

DEFAULT_RESOLVERS = ["8.8.8.8", "1.1.1.1"]


class PropagationChecker:
    """Resolve TXT records through explicit nameservers.

    Querying fixed public resolvers (instead of the host's stub resolver)
    mirrors what the issuer will see and avoids stale local caches.
    """

    def __init__(self, nameservers: Optional[list[str]] = None, timeout: float = 5.0):
        self.nameservers = list(nameservers or DEFAULT_RESOLVERS)
        self.timeout = timeout

    def _resolver(self) -> dns.resolver.Resolver:
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = self.nameservers
        resolver.lifetime = self.timeout
        resolver.cache = None
        return resolver

    def txt_records_for_name(self, name: str) -> list[str]:
        """Resolve the name and return the TXT records.

        Returns an empty list if the name could not be resolved.
        """
        try:
            answer = self._resolver().resolve(name, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.DNSException as exc:
            logger.warning("Error resolving %s: %s", name, exc)
            return []

        return [
            b"".join(rdata.strings).decode("utf-8", errors="replace")
            for rdata in answer
        ]

    def has_txt_value(self, name: str, value: str) -> bool:
        records = self.txt_records_for_name(name)
        found = value in records
        logger.debug("TXT %s: %d record(s), expected value %s", name, len(records),
                     "present" if found else "missing")
        return found
