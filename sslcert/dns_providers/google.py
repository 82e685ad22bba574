"""Google Cloud DNS provider for ACME DNS-01 challenges."""

import logging
import time

from renewal.errors import DNSProviderError, ValidationError
from sslcert.dns_providers.base import (
    ChallengeRecord,
    DnsChallengeProvider,
    challenge_record_name,
)

logger = logging.getLogger(__name__)


class GoogleCloudDnsProvider(DnsChallengeProvider):
    name = "google"
    TTL = 60
    CHANGE_POLL_SECONDS = 2
    CHANGE_MAX_POLLS = 30

    def __init__(self, project_id: str = "", zone_name: str = "", credentials_file: str = "",
                 checker=None, client=None):
        super().__init__(checker)
        if not project_id or not zone_name:
            raise ValidationError("Google Cloud DNS requires a project ID and managed zone name")
        self.project_id = project_id
        self.zone_name = zone_name
        self.credentials_file = credentials_file
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from google.cloud import dns
            if self.credentials_file:
                self._client = dns.Client.from_service_account_json(
                    self.credentials_file, project=self.project_id,
                )
            else:
                self._client = dns.Client(project=self.project_id)
        return self._client

    def _zone(self):
        return self.client.zone(self.zone_name)

    def _existing_rrset(self, zone, fqdn: str):
        """Return ``(ttl, rrdatas)`` of the live TXT set at *fqdn*, or None if unreadable."""
        from google.api_core.exceptions import GoogleAPIError

        try:
            for rrset in zone.list_resource_record_sets():
                if rrset.name == fqdn and rrset.record_type == "TXT":
                    return rrset.ttl, list(rrset.rrdatas)
        except GoogleAPIError as e:
            # Missing list permission; a conflicting set will surface as a 409 on create
            logger.info("Unable to list TXT records at %s: %s", fqdn, e)
            return None
        return self.TTL, []

    def _apply(self, zone, fqdn: str, old, new_values: list[str]) -> None:
        from google.api_core.exceptions import GoogleAPIError

        changes = zone.changes()
        if old and old[1]:
            changes.delete_record_set(zone.resource_record_set(fqdn, "TXT", old[0], old[1]))
        if new_values:
            changes.add_record_set(zone.resource_record_set(fqdn, "TXT", self.TTL, new_values))
        try:
            changes.create()
            for _ in range(self.CHANGE_MAX_POLLS):
                if changes.status == "done":
                    break
                time.sleep(self.CHANGE_POLL_SECONDS)
                changes.reload()
        except GoogleAPIError as e:
            raise DNSProviderError(f"Google Cloud DNS change for {fqdn} failed: {e}") from e

    def create_challenge(self, domain: str, value: str) -> ChallengeRecord:
        record_name = challenge_record_name(domain)
        fqdn = record_name.rstrip(".") + "."
        zone = self._zone()
        existing = self._existing_rrset(zone, fqdn)
        current = existing[1] if existing else []
        quoted = f'"{value}"'
        if quoted not in current:
            self._apply(zone, fqdn, existing, current + [quoted])
        logger.info("Created Google Cloud DNS TXT record %s", record_name)
        return ChallengeRecord(
            domain=domain, name=record_name, value=value,
            provider=self.name, record_id=record_name, zone=self.zone_name,
        )

    def delete_challenge(self, record: ChallengeRecord) -> None:
        fqdn = record.name.rstrip(".") + "."
        zone = self._zone()
        quoted = f'"{record.value}"'
        existing = self._existing_rrset(zone, fqdn)
        if existing is None:
            existing = (self.TTL, [quoted])
        if quoted not in existing[1]:
            logger.info("TXT value already absent from %s", record.name)
            return
        self._apply(zone, fqdn, existing, [v for v in existing[1] if v != quoted])
        logger.info("Deleted Google Cloud DNS TXT value from %s", record.name)
