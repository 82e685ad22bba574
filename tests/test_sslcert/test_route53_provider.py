"""Tests for the Route53 DNS provider."""

import unittest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from renewal.errors import DNSProviderError
from sslcert.dns_providers.route53 import Route53Provider


def _values(client, call_index=-1):
    batch = client.change_resource_record_sets.call_args_list[call_index].kwargs["ChangeBatch"]
    change = batch["Changes"][0]
    return change["Action"], [r["Value"] for r in change["ResourceRecordSet"]["ResourceRecords"]]


class TestRoute53Provider(unittest.TestCase):

    def setUp(self):
        self.client = MagicMock()
        self.client.list_hosted_zones_by_name.side_effect = lambda DNSName, MaxItems: {
            "HostedZones": [
                {"Id": "/hostedzone/Z123", "Name": "example.com.", "Config": {"PrivateZone": False}},
            ] if DNSName == "example.com" else []
        }
        self.provider = Route53Provider(client=self.client, checker=MagicMock())

    def test_create_upserts_quoted_value(self):
        record = self.provider.create_challenge("www.example.com", "abc")
        self.assertEqual(record.zone, "Z123")
        self.assertEqual(record.record_id, "TXT:_acme-challenge.www.example.com")
        self.assertEqual(_values(self.client), ("UPSERT", ['"abc"']))

    def test_values_accumulate_for_same_name(self):
        self.provider.create_challenge("example.com", "one")
        self.provider.create_challenge("*.example.com", "two")
        self.assertEqual(_values(self.client), ("UPSERT", ['"one"', '"two"']))

    def test_delete_keeps_other_values(self):
        first = self.provider.create_challenge("example.com", "one")
        second = self.provider.create_challenge("*.example.com", "two")
        self.provider.delete_challenge(first)
        self.assertEqual(_values(self.client), ("UPSERT", ['"two"']))
        self.provider.delete_challenge(second)
        self.assertEqual(_values(self.client), ("DELETE", ['"two"']))

    def test_private_zone_ignored(self):
        self.client.list_hosted_zones_by_name.side_effect = lambda DNSName, MaxItems: {
            "HostedZones": [
                {"Id": "/hostedzone/ZP", "Name": "example.com.", "Config": {"PrivateZone": True}},
            ]
        }
        with self.assertRaises(DNSProviderError):
            self.provider.create_challenge("example.com", "v")

    def test_explicit_zone_skips_lookup(self):
        provider = Route53Provider(zone_id="ZFIXED", client=self.client, checker=MagicMock())
        provider.create_challenge("example.com", "v")
        self.client.list_hosted_zones_by_name.assert_not_called()

    def test_client_error_mapped(self):
        self.client.change_resource_record_sets.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "Rate exceeded"}}, "ChangeResourceRecordSets")
        with self.assertRaises(DNSProviderError):
            self.provider.create_challenge("example.com", "v")


if __name__ == "__main__":
    unittest.main()
