"""Tests for the Cloudflare DNS provider."""

import unittest
from unittest.mock import MagicMock, patch

import requests

from renewal.errors import DNSProviderError, ValidationError
from sslcert.dns_providers.cloudflare import CloudflareProvider


def _response(payload, status=200):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload
    response.text = str(payload)
    return response


def _ok(result):
    return _response({"success": True, "result": result})


@patch("sslcert.dns_providers.cloudflare.requests.request")
class TestCloudflareProvider(unittest.TestCase):

    def setUp(self):
        self.provider = CloudflareProvider(token="cf-token", checker=MagicMock())

    def test_token_required(self, request):
        with self.assertRaises(ValidationError):
            CloudflareProvider(token="")

    def test_create_finds_zone_and_posts(self, request):
        request.side_effect = [
            _ok([]),                           # zones?name=_acme-challenge.www.example.com
            _ok([]),                           # zones?name=www.example.com
            _ok([{"id": "zone-1"}]),           # zones?name=example.com
            _ok({"id": "rec-1"}),              # POST
        ]
        record = self.provider.create_challenge("www.example.com", "token-value")

        self.assertEqual(record.record_id, "rec-1")
        self.assertEqual(record.zone, "zone-1")
        self.assertEqual(record.name, "_acme-challenge.www.example.com")
        method, url = request.call_args.args
        self.assertEqual(method, "POST")
        self.assertTrue(url.endswith("zones/zone-1/dns_records"))
        self.assertEqual(request.call_args.kwargs["json"]["content"], "token-value")
        self.assertEqual(request.call_args.kwargs["headers"]["Authorization"], "Bearer cf-token")

    def test_other_connections_records_untouched(self, request):
        first = CloudflareProvider(token="t", zone_id="zone-1", checker=MagicMock())
        second = CloudflareProvider(token="t", zone_id="zone-1", checker=MagicMock())
        request.side_effect = [_ok({"id": "rec-a"}), _ok({"id": "rec-b"})]
        first.create_challenge("example.com", "value-connection-A")
        second.create_challenge("example.com", "value-connection-B")
        methods = [c.args[0] for c in request.call_args_list]
        self.assertEqual(methods, ["POST", "POST"])

    def test_second_value_for_same_name_kept(self, request):
        provider = CloudflareProvider(token="t", zone_id="zone-1", checker=MagicMock())
        request.side_effect = [_ok({"id": "rec-1"}), _ok({"id": "rec-2"})]
        first = provider.create_challenge("example.com", "first")
        second = provider.create_challenge("*.example.com", "second")
        self.assertEqual(first.name, second.name)
        self.assertEqual((first.record_id, second.record_id), ("rec-1", "rec-2"))
        methods = [c.args[0] for c in request.call_args_list]
        self.assertNotIn("DELETE", methods)

    def test_delete(self, request):
        provider = CloudflareProvider(token="t", zone_id="zone-1", checker=MagicMock())
        request.side_effect = [_ok({"id": "rec-1"}), _ok({})]
        record = provider.create_challenge("example.com", "v")
        provider.delete_challenge(record)
        self.assertEqual(request.call_args.args[0], "DELETE")
        self.assertTrue(request.call_args.args[1].endswith("zones/zone-1/dns_records/rec-1"))

    def test_api_error(self, request):
        request.return_value = _response(
            {"success": False, "errors": [{"code": 10000, "message": "Authentication error"}]}, 403)
        with self.assertRaises(DNSProviderError) as ctx:
            self.provider.create_challenge("example.com", "v")
        self.assertIn("Authentication error", str(ctx.exception))
        self.assertEqual(ctx.exception.details["status"], 403)

    def test_network_error(self, request):
        request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(DNSProviderError):
            self.provider.create_challenge("example.com", "v")

    def test_non_json_response(self, request):
        response = _response(None, 502)
        response.json.side_effect = ValueError("no json")
        request.return_value = response
        with self.assertRaises(DNSProviderError):
            self.provider.create_challenge("example.com", "v")

    def test_no_zone(self, request):
        request.return_value = _ok([])
        with self.assertRaises(DNSProviderError):
            self.provider.create_challenge("www.example.com", "v")


if __name__ == "__main__":
    unittest.main()
