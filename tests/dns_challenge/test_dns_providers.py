"""Tests for the built-in DNS providers and the provider registry."""

from __future__ import annotations

import json
import subprocess
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from acmepipe.core.http import HttpResponse
from acmepipe.dns.base import DnsProvider
from acmepipe.dns.callback import CallbackDnsProvider
from acmepipe.dns.infoblox import InfobloxDnsProvider
from acmepipe.dns.registry import load_provider_class, provider_factory
from acmepipe.errors import DnsProviderAuthFailed, DnsProviderError, DnsRecordCreateFailed
from acmepipe.models.secrets import DnsCredentials

RECORD = "_acme-challenge.www.example.com"
WAPI = "https://ipam.example.com/wapi/v2.12"


def _resp(status: int, body=None) -> HttpResponse:
    return HttpResponse(status, body=json.dumps(body).encode() if body is not None else b"")


# =========================================================================
# Infoblox
# =========================================================================


@pytest.fixture
def infoblox(dns_credentials, settings):
    return InfobloxDnsProvider(dns_credentials, {}, settings.http)


class TestInfoblox:
    def test_basic_auth_header(self, infoblox):
        assert infoblox._http._headers["Authorization"] == "Basic YWRtaW46czNjcmV0"

    def test_config_options(self, settings):
        creds = DnsCredentials("https://grid.example.com/", "u:p")
        provider = InfobloxDnsProvider(
            creds, {"wapi_version": "v2.10", "view": "external", "port": 8443}, settings.http,
        )
        assert provider._base == "https://grid.example.com:8443/wapi/v2.10"
        assert provider._view == "external"

    def test_malformed_credentials(self, settings):
        with pytest.raises(DnsProviderAuthFailed, match="username:password"):
            InfobloxDnsProvider(DnsCredentials("h", "nocolon"), {}, settings.http)

    def test_create(self, infoblox):
        created = _resp(201, "record:txt/abc")
        with patch.object(infoblox._http, "send", return_value=created) as send:
            ref = infoblox.create_txt_record(RECORD, "value", 60)
        assert ref == "record:txt/abc"
        args, kwargs = send.call_args
        assert args == ("POST", f"{WAPI}/record:txt")
        assert kwargs["payload"] == {
            "name": RECORD,
            "text": "value",
            "ttl": 60,
            "use_ttl": True,
            "view": "default",
        }

    def test_create_rejected(self, infoblox):
        with patch.object(infoblox._http, "send", return_value=_resp(400, {"Error": "bad zone"})):
            with pytest.raises(DnsRecordCreateFailed, match="HTTP 400"):
                infoblox.create_txt_record(RECORD, "value", 60)

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failure(self, infoblox, status):
        with patch.object(infoblox._http, "send", return_value=_resp(status)) as send:
            with pytest.raises(DnsProviderAuthFailed):
                infoblox.create_txt_record(RECORD, "value", 60)
        assert send.call_count == 1

    def test_server_error_retried(self, infoblox):
        responses = [_resp(502), _resp(201, "record:txt/abc")]
        with patch.object(infoblox._http, "send", side_effect=responses) as send:
            assert infoblox.create_txt_record(RECORD, "value", 60) == "record:txt/abc"
        assert send.call_count == 2

    def test_get_txt_values(self, infoblox):
        body = [{"_ref": "r1", "name": RECORD, "text": "a"}, {"_ref": "r2", "text": "b"}]
        with patch.object(infoblox._http, "send", return_value=_resp(200, body)) as send:
            assert infoblox.get_txt_values(RECORD) == ["a", "b"]
        url = send.call_args.args[1]
        assert "name=_acme-challenge.www.example.com" in url
        assert "view=default" in url

    def test_delete_by_ref(self, infoblox):
        with patch.object(infoblox._http, "send", return_value=_resp(200, "r1")) as send:
            infoblox.delete_txt_record(RECORD, "a", ref="record:txt/r1")
        assert send.call_args.args == ("DELETE", f"{WAPI}/record:txt/r1")

    def test_delete_looks_up_matching_value(self, infoblox):
        lookup = _resp(
            200,
            [{"_ref": "record:txt/r1", "text": "a"}, {"_ref": "record:txt/r2", "text": "b"}],
        )
        with patch.object(infoblox._http, "send", side_effect=[lookup, _resp(200, "x")]) as send:
            infoblox.delete_txt_record(RECORD, "b")
        assert send.call_args.args == ("DELETE", f"{WAPI}/record:txt/r2")

    def test_delete_absent_is_noop(self, infoblox):
        with patch.object(infoblox._http, "send", return_value=_resp(200, [])) as send:
            infoblox.delete_txt_record(RECORD, "a")
        assert send.call_count == 1

    def test_delete_404_tolerated(self, infoblox):
        with patch.object(infoblox._http, "send", return_value=_resp(404)):
            infoblox.delete_txt_record(RECORD, "a", ref="record:txt/r1")


# =========================================================================
# Callback
# =========================================================================


@pytest.fixture
def callback(dns_credentials):
    return CallbackDnsProvider(
        dns_credentials,
        {
            "create_script": "/opt/create",
            "delete_script": "/opt/delete",
            "lookup_script": "/opt/ls",
        },
    )


class TestCallback:
    def test_validate_config(self):
        with pytest.raises(ValueError, match="delete_script"):
            CallbackDnsProvider.validate_config({"create_script": "/x"})

    def test_create_invokes_script(self, callback):
        with patch("acmepipe.dns.callback.subprocess.run") as run:
            assert callback.create_txt_record(RECORD, "value", 60) is None
        args, kwargs = run.call_args
        assert args[0] == ["/opt/create", "www.example.com", RECORD, "value", "60"]
        assert kwargs["env"]["ACMEPIPE_DNS_HOST"] == "ipam.example.com"
        assert kwargs["env"]["ACMEPIPE_DNS_CREDENTIAL"] == "admin:s3cret"
        assert "admin:s3cret" not in args[0]

    def test_create_auth_failure_exit_code(self, callback):
        err = subprocess.CalledProcessError(77, ["/opt/create"], stderr="denied")
        with patch("acmepipe.dns.callback.subprocess.run", side_effect=err):
            with pytest.raises(DnsProviderAuthFailed, match="denied"):
                callback.create_txt_record(RECORD, "value", 60)

    def test_create_failure(self, callback):
        err = subprocess.CalledProcessError(1, ["/opt/create"], stderr="zone missing")
        with patch("acmepipe.dns.callback.subprocess.run", side_effect=err):
            with pytest.raises(DnsRecordCreateFailed, match="status 1"):
                callback.create_txt_record(RECORD, "value", 60)

    def test_create_missing_script(self, callback):
        with patch("acmepipe.dns.callback.subprocess.run", side_effect=FileNotFoundError("x")):
            with pytest.raises(DnsRecordCreateFailed):
                callback.create_txt_record(RECORD, "value", 60)

    def test_delete_timeout_retryable(self, callback):
        err = subprocess.TimeoutExpired(["/opt/delete"], 60)
        with patch("acmepipe.dns.callback.subprocess.run", side_effect=err):
            with pytest.raises(DnsProviderError) as exc_info:
                callback.delete_txt_record(RECORD, "value")
        assert exc_info.value.retryable is True

    def test_lookup_parses_lines(self, callback):
        result = MagicMock(stdout="a\n\n b \n")
        with patch("acmepipe.dns.callback.subprocess.run", return_value=result):
            assert callback.get_txt_values(RECORD) == ["a", "b"]

    def test_lookup_without_script(self, dns_credentials):
        provider = CallbackDnsProvider(
            dns_credentials, {"create_script": "/c", "delete_script": "/d"},
        )
        assert provider.get_txt_values(RECORD) == []


# =========================================================================
# Registry
# =========================================================================


class CustomProvider(DnsProvider):
    def create_txt_record(self, record_name, value, ttl):
        return None

    def delete_txt_record(self, record_name, value, ref=None):
        return None


class NotAProvider:
    pass


class TestRegistry:
    @pytest.mark.parametrize(
        ("name", "cls"),
        [("infoblox", InfobloxDnsProvider), ("callback", CallbackDnsProvider)],
    )
    def test_builtin(self, name, cls):
        assert load_provider_class(name) is cls

    def test_ext_provider(self):
        assert load_provider_class(f"ext:{__name__}.CustomProvider") is CustomProvider

    def test_ext_not_subclass(self):
        with pytest.raises(DnsProviderError, match="must be a subclass"):
            load_provider_class(f"ext:{__name__}.NotAProvider")

    def test_ext_unqualified(self):
        with pytest.raises(DnsProviderError, match="fully qualified"):
            load_provider_class("ext:Provider")

    def test_ext_missing_module(self):
        with pytest.raises(DnsProviderError, match="Failed to load"):
            load_provider_class("ext:no_such_pkg.mod.Provider")

    def test_unknown(self):
        with pytest.raises(DnsProviderError, match="Unknown DNS provider"):
            load_provider_class("route53")

    def test_factory_builds_with_credentials(self, settings, dns_credentials):
        build = provider_factory(settings.dns, settings.http)
        provider = build(dns_credentials)
        assert isinstance(provider, CallbackDnsProvider)
        assert provider.credentials is dns_credentials

    def test_factory_validates_config_up_front(self, settings):
        dns = replace(settings.dns, provider_config={})
        with pytest.raises(DnsProviderError, match="Invalid configuration"):
            provider_factory(dns, settings.http)
