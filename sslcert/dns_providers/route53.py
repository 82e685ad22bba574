"""AWS Route53 DNS-01 provider."""

import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from renewal.errors import DNSProviderError
from sslcert.dns_providers.base import (
    ChallengeRecord,
    DnsChallengeProvider,
    candidate_zones,
    challenge_record_name,
)

logger = logging.getLogger(__name__)


class Route53Provider(DnsChallengeProvider):
    """UPSERT challenge values into a hosted zone.

    A record set holds every value for its name, so values created for the
    same name (base domain plus wildcard) are tracked and written together.
    """

    name = "route53"
    TTL = 60

    def __init__(self, access_key: str = "", secret_key: str = "", zone_id: str = "",
                 checker=None, client=None):
        super().__init__(checker)
        if client is None:
            kwargs = {}
            if access_key and secret_key:
                kwargs = {"aws_access_key_id": access_key, "aws_secret_access_key": secret_key}
            client = boto3.client("route53", **kwargs)
        self.client = client
        self.zone_id = zone_id
        self._values: dict[str, list[str]] = {}

    def _find_zone(self, record_name: str) -> str:
        if self.zone_id:
            return self.zone_id
        try:
            for candidate in candidate_zones(record_name):
                resp = self.client.list_hosted_zones_by_name(DNSName=candidate, MaxItems="1")
                for zone in resp.get("HostedZones", []):
                    if zone["Name"].rstrip(".").lower() == candidate and not zone.get("Config", {}).get("PrivateZone"):
                        return zone["Id"].split("/")[-1]
        except (BotoCoreError, ClientError) as e:
            raise DNSProviderError(f"Route53 zone lookup failed: {e}") from e
        raise DNSProviderError(f"No Route53 hosted zone found for {record_name}")

    def _change(self, zone_id: str, action: str, record_name: str, values: list[str]) -> None:
        try:
            self.client.change_resource_record_sets(
                HostedZoneId=zone_id,
                ChangeBatch={
                    "Comment": "ACME DNS-01 challenge",
                    "Changes": [{
                        "Action": action,
                        "ResourceRecordSet": {
                            "Name": record_name,
                            "Type": "TXT",
                            "TTL": self.TTL,
                            # Route53 requires TXT values to be quoted
                            "ResourceRecords": [{"Value": f'"{v}"'} for v in values],
                        },
                    }],
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise DNSProviderError(f"Route53 {action} for {record_name} failed: {e}") from e

    def create_challenge(self, domain: str, value: str) -> ChallengeRecord:
        record_name = challenge_record_name(domain)
        zone_id = self._find_zone(record_name)
        values = self._values.setdefault(record_name, [])
        if value not in values:
            values.append(value)
        self._change(zone_id, "UPSERT", record_name, values)
        logger.info("Upserted Route53 TXT record %s (%d value(s))", record_name, len(values))
        return ChallengeRecord(
            domain=domain, name=record_name, value=value,
            provider=self.name, record_id=f"TXT:{record_name}", zone=zone_id,
        )

    def delete_challenge(self, record: ChallengeRecord) -> None:
        values = self._values.get(record.name, [record.value])
        remaining = [v for v in values if v != record.value]
        if remaining:
            self._change(record.zone, "UPSERT", record.name, remaining)
            self._values[record.name] = remaining
        else:
            # DELETE must match the live record set exactly
            self._change(record.zone, "DELETE", record.name, values)
            self._values.pop(record.name, None)
        logger.info("Removed Route53 TXT value from %s", record.name)
