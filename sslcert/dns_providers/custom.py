"""Manual DNS provider: the operator publishes the TXT record by hand."""

import logging

from sslcert.dns_providers.base import ChallengeRecord, DnsChallengeProvider, challenge_record_name

logger = logging.getLogger(__name__)

MANUAL_TTL = 300


class ManualDnsProvider(DnsChallengeProvider):
    """Never touches DNS; hands out instructions and watches for the record."""

    name = "custom"
    is_manual = True

    def __init__(self, checker=None, poll_interval: int = 30):
        super().__init__(checker)
        self.poll_interval = poll_interval

    def create_challenge(self, domain: str, value: str) -> ChallengeRecord:
        record = ChallengeRecord(
            domain=domain, name=challenge_record_name(domain), value=value, provider=self.name,
        )
        logger.info("Manual DNS record required: %s TXT %s", record.name, value)
        return record

    def delete_challenge(self, record: ChallengeRecord) -> None:
        logger.debug("Manual provider leaves %s in place; remove it by hand", record.name)

    def instructions(self, record: ChallengeRecord) -> str:
        servers = ", ".join(self.checker.nameservers)
        return (
            "Manual DNS configuration required:\n"
            "\n"
            "1. Log into your DNS management interface\n"
            "2. Add a new TXT record:\n"
            f"   - Record Type: TXT\n"
            f"   - Name/Host: {record.name}\n"
            f"   - Value/Content: {record.value}\n"
            f"   - TTL: {MANUAL_TTL} (or minimum allowed)\n"
            "3. Save the record. The system detects it automatically, "
            f"checking every {self.poll_interval} seconds.\n"
            "\n"
            f"DNS servers being checked: {servers}\n"
        )
