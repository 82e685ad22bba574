"""DigitalOcean DNS-01 provider (REST API v2)."""

import logging

import requests

from renewal.errors import DNSProviderError, ValidationError
from sslcert.dns_providers.base import (
    ChallengeRecord,
    DnsChallengeProvider,
    candidate_zones,
    challenge_record_name,
    relative_name,
)

logger = logging.getLogger(__name__)


class DigitalOceanProvider(DnsChallengeProvider):
    name = "digitalocean"
    BASE_URL = "https://api.digitalocean.com/v2/"
    TTL = 30

    def __init__(self, token: str = "", base_domain: str = "", checker=None, timeout: int = 30):
        super().__init__(checker)
        if not token:
            raise ValidationError("DigitalOcean API token not configured")
        self.base_domain = base_domain.lower().rstrip(".")
        self.timeout = timeout
        self.headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }

    def _request(self, method: str, path: str, expected=(200, 201, 204), **kwargs):
        try:
            response = requests.request(
                method, self.BASE_URL + path, headers=self.headers,
                timeout=self.timeout, **kwargs,
            )
        except requests.RequestException as e:
            raise DNSProviderError(f"DigitalOcean API unreachable: {e}") from e
        if response.status_code not in expected:
            raise DNSProviderError(
                f"DigitalOcean API error (HTTP {response.status_code}): {response.text[:200]}",
                details={"status": response.status_code},
            )
        return response

    def _find_domain(self, record_name: str) -> str:
        if self.base_domain:
            return self.base_domain
        for candidate in candidate_zones(record_name):
            response = self._request("GET", f"domains/{candidate}", expected=(200, 404))
            if response.status_code == 200:
                return candidate
        raise DNSProviderError(f"No DigitalOcean domain found for {record_name}")

    def create_challenge(self, domain: str, value: str) -> ChallengeRecord:
        record_name = challenge_record_name(domain)
        base = self._find_domain(record_name)
        response = self._request("POST", f"domains/{base}/records", json={
            "type": "TXT",
            "name": relative_name(record_name, base),
            "data": value,
            "ttl": self.TTL,
        })
        body = response.json()
        if "domain_record" not in body:
            raise DNSProviderError(f"Adding DNS record failed: {response.text[:200]}")
        record_id = str(body["domain_record"]["id"])
        logger.info("Created DigitalOcean TXT record %s (%s)", record_name, record_id)
        return ChallengeRecord(
            domain=domain, name=record_name, value=value,
            provider=self.name, record_id=record_id, zone=base,
        )

    def delete_challenge(self, record: ChallengeRecord) -> None:
        if not record.record_id:
            return
        self._request("DELETE", f"domains/{record.zone}/records/{record.record_id}",
                      expected=(200, 204, 404))
        logger.info("Deleted DigitalOcean TXT record %s (%s)", record.name, record.record_id)
