"""DNS-01 challenge providers and the provider factory."""

from typing import Optional

from renewal.connection import DnsChallengeMode, DnsProviderName
from renewal.errors import ValidationError
from sslcert.dns_providers.base import (
    ChallengeRecord,
    DnsChallengeProvider,
    challenge_record_name,
)
from sslcert.dns_providers.custom import ManualDnsProvider
from sslcert.dns_providers.propagation import PropagationChecker

__all__ = [
    "ChallengeRecord",
    "DnsChallengeProvider",
    "ManualDnsProvider",
    "PropagationChecker",
    "challenge_record_name",
    "get_dns_provider",
]


def get_dns_provider(
    connection,
    credentials: Optional[dict] = None,
    checker: Optional[PropagationChecker] = None,
    manual_poll_interval: int = 30,
) -> DnsChallengeProvider:
    """Build the provider for ``connection``.

    ``credentials`` maps provider names (``cloudflare``, ``route53`` ...) to
    the keyword arguments of that provider's constructor. Selection depends
    only on ``dns_provider`` and ``dns_challenge_mode``.
    """
    credentials = credentials or {}
    provider = DnsProviderName(connection.dns_provider)

    if provider == DnsProviderName.CUSTOM or connection.dns_challenge_mode == DnsChallengeMode.MANUAL:
        return ManualDnsProvider(checker=checker, poll_interval=manual_poll_interval)

    kwargs = dict(credentials.get(provider.value, {}))
    if provider == DnsProviderName.CLOUDFLARE:
        from sslcert.dns_providers.cloudflare import CloudflareProvider
        return CloudflareProvider(checker=checker, **kwargs)
    if provider == DnsProviderName.ROUTE53:
        from sslcert.dns_providers.route53 import Route53Provider
        return Route53Provider(checker=checker, **kwargs)
    if provider == DnsProviderName.AZURE:
        from sslcert.dns_providers.azure import AzureDnsProvider
        return AzureDnsProvider(checker=checker, **kwargs)
    if provider == DnsProviderName.GOOGLE:
        from sslcert.dns_providers.google import GoogleCloudDnsProvider
        return GoogleCloudDnsProvider(checker=checker, **kwargs)
    if provider == DnsProviderName.DIGITALOCEAN:
        from sslcert.dns_providers.digitalocean import DigitalOceanProvider
        return DigitalOceanProvider(checker=checker, **kwargs)
    raise ValidationError(f"Unsupported DNS provider: {connection.dns_provider}")
