"""Azure DNS provider for ACME DNS-01 challenges."""

import logging

from renewal.errors import DNSProviderError, ValidationError
from sslcert.dns_providers.base import (
    ChallengeRecord,
    DnsChallengeProvider,
    challenge_record_name,
    relative_name,
)

logger = logging.getLogger(__name__)


class AzureDnsProvider(DnsChallengeProvider):
    """Manage ``_acme-challenge`` TXT record sets in an Azure DNS zone."""

    name = "azure"
    TTL = 60

    def __init__(
        self,
        subscription_id: str = "",
        resource_group: str = "",
        zone_name: str = "",
        tenant_id: str = "",
        client_id: str = "",
        client_secret: str = "",
        checker=None,
        client=None,
    ):
        super().__init__(checker)
        if not subscription_id or not resource_group:
            raise ValidationError("Azure DNS requires a subscription ID and resource group")
        self.subscription_id = subscription_id
        self.resource_group = resource_group
        self.zone_name = zone_name.lower().rstrip(".")
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self._client = client
        self._values: dict[str, list[str]] = {}

    def _get_credential(self):
        """Return an Azure credential using service principal or default chain."""
        if self.tenant_id and self.client_id and self.client_secret:
            from azure.identity import ClientSecretCredential
            return ClientSecretCredential(
                tenant_id=self.tenant_id,
                client_id=self.client_id,
                client_secret=self.client_secret,
            )
        from azure.identity import DefaultAzureCredential
        return DefaultAzureCredential()

    @property
    def client(self):
        if self._client is None:
            from azure.mgmt.dns import DnsManagementClient
            self._client = DnsManagementClient(self._get_credential(), self.subscription_id)
        return self._client

    def find_zone(self, record_name: str) -> str:
        """Zone in the resource group that manages ``record_name``."""
        if self.zone_name:
            return self.zone_name
        from azure.core.exceptions import AzureError

        try:
            zones = [z.name.lower().rstrip(".")
                     for z in self.client.zones.list_by_resource_group(self.resource_group)]
        except AzureError as e:
            raise DNSProviderError(f"Failed to list Azure DNS zones: {e}") from e
        # Longest name first so sub.example.com matches before example.com
        zones.sort(key=len, reverse=True)
        for zone in zones:
            if record_name == zone or record_name.endswith("." + zone):
                return zone
        raise DNSProviderError(f"No Azure DNS zone found for {record_name}")

    def _write(self, zone: str, record_name: str, values: list[str]) -> None:
        from azure.core.exceptions import AzureError
        from azure.mgmt.dns.models import RecordSet, TxtRecord

        relative = relative_name(record_name, zone)
        try:
            if values:
                self.client.record_sets.create_or_update(
                    self.resource_group, zone, relative, "TXT",
                    RecordSet(ttl=self.TTL, txt_records=[TxtRecord(value=[v]) for v in values]),
                )
            else:
                self.client.record_sets.delete(self.resource_group, zone, relative, "TXT")
        except AzureError as e:
            raise DNSProviderError(f"Azure DNS update for {record_name} failed: {e}") from e

    def create_challenge(self, domain: str, value: str) -> ChallengeRecord:
        record_name = challenge_record_name(domain)
        zone = self.find_zone(record_name)
        values = self._values.setdefault(record_name, [])
        if value not in values:
            values.append(value)
        self._write(zone, record_name, values)
        logger.info("Created TXT record %s in zone %s", record_name, zone)
        return ChallengeRecord(
            domain=domain, name=record_name, value=value,
            provider=self.name, record_id=relative_name(record_name, zone), zone=zone,
        )

    def delete_challenge(self, record: ChallengeRecord) -> None:
        values = self._values.get(record.name, [record.value])
        remaining = [v for v in values if v != record.value]
        self._write(record.zone, record.name, remaining)
        if remaining:
            self._values[record.name] = remaining
        else:
            self._values.pop(record.name, None)
        logger.info("Deleted TXT value from %s in zone %s", record.name, record.zone)
