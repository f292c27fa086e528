"""Tests for acmepipe.deploy.binder — DeploymentBinder."""

from __future__ import annotations

import threading
from dataclasses import replace

import pytest

from acmepipe.core.leases import LeaseRegistry
from acmepipe.deploy.binder import DeploymentBinder
from acmepipe.errors import (
    BindingUpdateFailed,
    CertificateImportFailed,
    SiteNotFound,
    TargetServerError,
)
from acmepipe.models.binding import Binding, DeploymentTarget


@pytest.fixture
def binder(settings, fake_server, hooks):
    return DeploymentBinder(lambda server: fake_server, settings=settings.deploy, hooks=hooks)


class TestImport:
    def test_imports_and_creates_binding(self, binder, fake_server, target, make_artifact, hooks):
        artifact = make_artifact()
        fingerprint = binder.deploy(target, artifact)

        assert fingerprint == artifact.fingerprint
        assert fake_server.imports == 1
        assert fake_server.stores["My"] == {artifact.fingerprint}
        binding = fake_server.bindings[("Default", "https", 443)]
        assert binding.fingerprint == artifact.fingerprint
        assert binding.server == "web01"

        event = hooks.last("deployment.completed")
        assert event["action"] == "created"
        assert event["domain"] == artifact.domain

    def test_import_deduplicated_by_fingerprint(self, binder, fake_server, target, make_artifact):
        artifact = make_artifact()
        binder.deploy(target, artifact)
        binder.deploy(target, artifact)
        assert fake_server.imports == 1
        assert len(fake_server.stores["My"]) == 1

    def test_reported_fingerprint_mismatch(self, binder, fake_server, target, make_artifact):
        fake_server.report_fingerprint = "00" * 32
        with pytest.raises(CertificateImportFailed, match="reported fingerprint"):
            binder.deploy(target, make_artifact())
        assert fake_server.bindings == {}

    def test_transport_error_becomes_import_failure(
        self, settings, target, make_artifact, make_server,
    ):
        class Unreachable(make_server):
            def has_certificate(self, fingerprint, store_location):
                raise TargetServerError("connection refused", retryable=True)

        binder = DeploymentBinder(lambda s: Unreachable(), settings=settings.deploy)
        with pytest.raises(CertificateImportFailed, match="connection refused"):
            binder.deploy(target, make_artifact())

    def test_wrong_passphrase_rejected(self, binder, target, make_artifact):
        artifact = replace(make_artifact(), passphrase="nope")
        with pytest.raises(CertificateImportFailed):
            binder.deploy(target, artifact)


class TestBinding:
    def test_existing_binding_updated_in_place(self, binder, fake_server, target, make_artifact):
        fake_server.bindings[("Default", "https", 443)] = Binding(
            "web01", "Default", "https", 443, "AA" * 32, "WebHosting", "www.example.com",
        )
        artifact = make_artifact()
        binder.deploy(target, artifact)

        updated = fake_server.bindings[("Default", "https", 443)]
        assert updated.fingerprint == artifact.fingerprint
        assert updated.host_name == "www.example.com"
        assert updated.store_location == "My"
        assert len(fake_server.set_calls) == 1

    def test_matching_binding_unchanged(self, binder, fake_server, target, make_artifact, hooks):
        artifact = make_artifact()
        binder.deploy(target, artifact)
        binder.deploy(target, artifact)
        assert len(fake_server.set_calls) == 1
        assert hooks.last("deployment.completed")["action"] == "unchanged"

    def test_other_port_untouched(self, binder, fake_server, make_artifact):
        fake_server.bindings[("Default", "https", 8443)] = Binding(
            "web01", "Default", "https", 8443, "BB" * 32,
        )
        binder.deploy(DeploymentTarget("web01", "Default", port=443), make_artifact())
        assert fake_server.bindings[("Default", "https", 8443)].fingerprint == "BB" * 32

    def test_site_not_found(self, binder, make_artifact):
        with pytest.raises(SiteNotFound):
            binder.deploy(DeploymentTarget("web01", "Missing"), make_artifact())

    def test_set_failure_becomes_binding_failure(self, binder, fake_server, target, make_artifact):
        fake_server.fail_set = TargetServerError("locked by another process")
        with pytest.raises(BindingUpdateFailed, match="locked by another process"):
            binder.deploy(target, make_artifact())

    def test_lease_held_elsewhere(self, settings, fake_server, target, make_artifact):
        leases = LeaseRegistry("binding update", BindingUpdateFailed)
        deploy_settings = replace(settings.deploy, binding_lock_timeout_seconds=0.05)
        binder = DeploymentBinder(
            lambda s: fake_server, settings=deploy_settings, leases=leases,
        )
        with leases.hold(target.binding_key.lower()), pytest.raises(BindingUpdateFailed):
            binder.deploy(target, make_artifact())

    def test_concurrent_deploys_serialised(self, binder, fake_server, target, make_artifact):
        artifacts = [make_artifact(), make_artifact()]
        errors: list[Exception] = []

        def run(artifact):
            try:
                binder.deploy(target, artifact)
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=run, args=(a,)) for a in artifacts]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert errors == []
        final = fake_server.bindings[("Default", "https", 443)].fingerprint
        assert final in {a.fingerprint for a in artifacts}
        assert len(fake_server.set_calls) == 2
