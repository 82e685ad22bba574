"""Cloudflare DNS-01 provider (REST API v4)."""

import logging

import requests

from renewal.errors import DNSProviderError, ValidationError
from sslcert.dns_providers.base import (
    ChallengeRecord,
    DnsChallengeProvider,
    candidate_zones,
    challenge_record_name,
)

logger = logging.getLogger(__name__)


class CloudflareProvider(DnsChallengeProvider):
    """Publish challenge TXT records through the Cloudflare API."""

    name = "cloudflare"
    BASE_URL = "https://api.cloudflare.com/client/v4/"
    TTL = 120

    def __init__(self, token: str = "", zone_id: str = "", checker=None, timeout: int = 30):
        super().__init__(checker)
        if not token:
            raise ValidationError("Cloudflare API token not configured")
        self.token = token
        self.zone_id = zone_id
        self.timeout = timeout
        self._zone_cache: dict[str, str] = {}

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = requests.request(
                method,
                self.BASE_URL + path,
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise DNSProviderError(f"Cloudflare API unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            raise DNSProviderError(
                f"Cloudflare API returned HTTP {response.status_code}",
                details={"status": response.status_code},
            )

        if not data.get("success", False):
            errors = data.get("errors") or []
            message = "; ".join(str(err.get("message", err)) for err in errors) or response.text
            raise DNSProviderError(
                f"Cloudflare API error: {message}",
                details={"status": response.status_code, "errors": errors},
            )
        return data

    def _find_zone(self, record_name: str) -> str:
        if self.zone_id:
            return self.zone_id
        for candidate in candidate_zones(record_name):
            if candidate in self._zone_cache:
                return self._zone_cache[candidate]
            data = self._request("GET", "zones", params={"name": candidate})
            if data.get("result"):
                zone_id = data["result"][0]["id"]
                self._zone_cache[candidate] = zone_id
                logger.info("Cloudflare zone for %s is %s (%s)", record_name, candidate, zone_id)
                return zone_id
        raise DNSProviderError(f"No Cloudflare zone found for {record_name}")

    def create_challenge(self, domain: str, value: str) -> ChallengeRecord:
        record_name = challenge_record_name(domain)
        zone_id = self._find_zone(record_name)

        data = self._request("POST", f"zones/{zone_id}/dns_records", json={
            "type": "TXT",
            "name": record_name,
            "content": value,
            "ttl": self.TTL,
        })
        record_id = data["result"]["id"]
        logger.info("Created Cloudflare TXT record %s (%s)", record_name, record_id)
        return ChallengeRecord(
            domain=domain, name=record_name, value=value,
            provider=self.name, record_id=record_id, zone=zone_id,
        )

    def delete_challenge(self, record: ChallengeRecord) -> None:
        if not record.record_id:
            return
        self._request("DELETE", f"zones/{record.zone}/dns_records/{record.record_id}")
        logger.info("Deleted Cloudflare TXT record %s (%s)", record.name, record.record_id)
