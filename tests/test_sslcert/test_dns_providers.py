"""Tests for provider selection, the manual provider and propagation checks."""

import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import dns.exception
import dns.resolver

from renewal.connection import Connection, DnsChallengeMode, DnsProviderName
from renewal.errors import ValidationError
from sslcert.dns_providers import (
    ChallengeRecord,
    ManualDnsProvider,
    PropagationChecker,
    challenge_record_name,
    get_dns_provider,
)
from sslcert.dns_providers.base import candidate_zones, relative_name
from sslcert.dns_providers.cloudflare import CloudflareProvider
from sslcert.dns_providers.digitalocean import DigitalOceanProvider
from sslcert.dns_providers.route53 import Route53Provider


class TestNames(unittest.TestCase):

    def test_challenge_record_name(self):
        self.assertEqual(challenge_record_name("WWW.Example.com."), "_acme-challenge.www.example.com")
        self.assertEqual(challenge_record_name("*.example.com"), "_acme-challenge.example.com")

    def test_relative_name(self):
        self.assertEqual(relative_name("_acme-challenge.www.example.com", "example.com"),
                         "_acme-challenge.www")
        self.assertEqual(relative_name("example.com.", "example.com"), "@")

    def test_candidate_zones(self):
        self.assertEqual(candidate_zones("_acme-challenge.a.example.com"),
                         ["_acme-challenge.a.example.com", "a.example.com", "example.com"])


class TestFactory(unittest.TestCase):

    def _conn(self, **kwargs):
        return Connection(name="c", hostname="www", domain="example.com", **kwargs)

    def test_custom_is_manual(self):
        provider = get_dns_provider(self._conn(dns_provider=DnsProviderName.CUSTOM))
        self.assertIsInstance(provider, ManualDnsProvider)
        self.assertTrue(provider.is_manual)

    def test_manual_mode_overrides_provider(self):
        provider = get_dns_provider(self._conn(dns_provider=DnsProviderName.CLOUDFLARE,
                                               dns_challenge_mode=DnsChallengeMode.MANUAL))
        self.assertIsInstance(provider, ManualDnsProvider)

    def test_credentials_passed_to_provider(self):
        checker = PropagationChecker(["9.9.9.9"])
        provider = get_dns_provider(
            self._conn(dns_provider=DnsProviderName.CLOUDFLARE),
            credentials={"cloudflare": {"token": "cf-token", "zone_id": "z1"}},
            checker=checker,
        )
        self.assertIsInstance(provider, CloudflareProvider)
        self.assertIs(provider.checker, checker)
        self.assertEqual(provider.zone_id, "z1")

    def test_route53_and_digitalocean(self):
        route53 = get_dns_provider(self._conn(dns_provider=DnsProviderName.ROUTE53),
                                   credentials={"route53": {"client": MagicMock()}})
        self.assertIsInstance(route53, Route53Provider)
        do = get_dns_provider(self._conn(dns_provider=DnsProviderName.DIGITALOCEAN),
                              credentials={"digitalocean": {"token": "t"}})
        self.assertIsInstance(do, DigitalOceanProvider)

    def test_missing_credentials_rejected(self):
        with self.assertRaises(ValidationError):
            get_dns_provider(self._conn(dns_provider=DnsProviderName.DIGITALOCEAN))


class TestManualProvider(unittest.TestCase):

    def test_create_does_not_touch_dns(self):
        provider = ManualDnsProvider(checker=PropagationChecker(["8.8.8.8"]), poll_interval=30)
        record = provider.create_challenge("www.example.com", "abc123")
        self.assertEqual(record.name, "_acme-challenge.www.example.com")
        self.assertEqual(record.provider, "custom")
        provider.delete_challenge(record)

    def test_instructions(self):
        provider = ManualDnsProvider(checker=PropagationChecker(["8.8.8.8", "1.1.1.1"]))
        record = ChallengeRecord("www.example.com", "_acme-challenge.www.example.com",
                                 "abc123", "custom")
        text = provider.instructions(record)
        self.assertIn("_acme-challenge.www.example.com", text)
        self.assertIn("abc123", text)
        self.assertIn("TTL: 300", text)
        self.assertIn("8.8.8.8, 1.1.1.1", text)


class TestPropagationChecker(unittest.TestCase):

    def _answer(self, *values):
        return [SimpleNamespace(strings=[v.encode()]) for v in values]

    @patch("sslcert.dns_providers.propagation.dns.resolver.Resolver")
    def test_value_present(self, resolver_cls):
        resolver_cls.return_value.resolve.return_value = self._answer("other", "expected")
        checker = PropagationChecker(["8.8.8.8"])
        self.assertTrue(checker.has_txt_value("_acme-challenge.example.com", "expected"))
        self.assertEqual(resolver_cls.return_value.nameservers, ["8.8.8.8"])

    @patch("sslcert.dns_providers.propagation.dns.resolver.Resolver")
    def test_value_missing(self, resolver_cls):
        resolver_cls.return_value.resolve.return_value = self._answer("stale")
        self.assertFalse(PropagationChecker().has_txt_value("n", "expected"))

    @patch("sslcert.dns_providers.propagation.dns.resolver.Resolver")
    def test_non_utf8_record_does_not_hide_value(self, resolver_cls):
        resolver_cls.return_value.resolve.return_value = [
            SimpleNamespace(strings=[b"v=spf1 \xff\xfe"]),
            SimpleNamespace(strings=[b"expected"]),
        ]
        checker = PropagationChecker()
        self.assertTrue(checker.has_txt_value("_acme-challenge.example.com", "expected"))
        self.assertEqual(checker.txt_records_for_name("n")[0], "v=spf1 \ufffd\ufffd")

    @patch("sslcert.dns_providers.propagation.dns.resolver.Resolver")
    def test_nxdomain_is_empty(self, resolver_cls):
        resolver_cls.return_value.resolve.side_effect = dns.resolver.NXDOMAIN()
        self.assertEqual(PropagationChecker().txt_records_for_name("n"), [])

    @patch("sslcert.dns_providers.propagation.dns.resolver.Resolver")
    def test_resolver_timeout_is_empty(self, resolver_cls):
        resolver_cls.return_value.resolve.side_effect = dns.exception.Timeout()
        self.assertEqual(PropagationChecker().txt_records_for_name("n"), [])

    def test_provider_check_uses_checker(self):
        checker = MagicMock()
        checker.has_txt_value.return_value = True
        provider = ManualDnsProvider(checker=checker)
        record = ChallengeRecord("d", "_acme-challenge.d", "v", "custom")
        self.assertTrue(provider.check_propagated(record))
        checker.has_txt_value.assert_called_once_with("_acme-challenge.d", "v")


if __name__ == "__main__":
    unittest.main()
