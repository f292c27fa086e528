"""Per-domain pipeline: secrets -> account -> issue -> deploy -> verify.

A stage failure is terminal for its domain only.  Nothing is rolled
back: a certificate issued before a deployment failure is kept in the
:class:`PipelineResult` so :meth:`Orchestrator.deploy_only` can retry
the deployment without a new issuance.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from acmepipe.core.leases import LeaseRegistry
from acmepipe.core.types import Stage, StageStatus
from acmepipe.errors import (
    AccountRegistrationFailed,
    BindingUpdateFailed,
    ChallengeInProgress,
    PipelineError,
    VerificationMismatch,
)
from acmepipe.logging.setup import pipeline_context
from acmepipe.models.results import PipelineResult, StageOutcome
from acmepipe.secrets.provider import SecretProvider

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from acmepipe.acme.account import AcmeAccountManager
    from acmepipe.acme.issuer import CertificateIssuer
    from acmepipe.config.settings import PipelineAppSettings
    from acmepipe.deploy.binder import DeploymentBinder
    from acmepipe.deploy.verify import VerificationProbe
    from acmepipe.hooks.registry import HookRegistry
    from acmepipe.models.account import AccountIdentity
    from acmepipe.models.binding import DeploymentTarget
    from acmepipe.models.certificate import CertificateArtifact
    from acmepipe.models.secrets import SecretsBundle
    from acmepipe.secrets.base import SecretStore

log = logging.getLogger(__name__)

T = TypeVar("T")

UNEXPECTED_ERROR_CODE = "unexpectedError"


@dataclass(frozen=True)
class PipelineRequest:
    """One domain to issue and deploy.

    ``directory_url`` and ``environment`` override the configured ACME
    directory; ``secret_store_name`` overrides ``secrets.store_name``.
    """

    domain: str
    target: DeploymentTarget
    secret_store_name: str | None = None
    directory_url: str | None = None
    environment: str | None = None
    contact: tuple[str, ...] = ()


class _StageFailed(Exception):
    """Internal signal: the stage outcome has been recorded as failed."""


class _Run:
    """Accumulates stage outcomes for one domain."""

    def __init__(self, domain: str) -> None:
        self.domain = domain
        self.outcomes: list[StageOutcome] = []

    def stage(self, stage: Stage, func: Callable[[], T]) -> T:
        start = time.monotonic()
        with pipeline_context(self.domain, stage.value):
            try:
                value = func()
            except PipelineError as exc:
                log.error("Stage %s failed: [%s] %s", stage.value, exc.code, exc.detail)
                self._record(stage, StageStatus.FAILED, start, exc.code, exc.detail)
                raise _StageFailed from exc
            except Exception as exc:
                log.exception("Stage %s failed unexpectedly", stage.value)
                self._record(stage, StageStatus.FAILED, start, UNEXPECTED_ERROR_CODE, str(exc))
                raise _StageFailed from exc
        self._record(stage, StageStatus.SUCCEEDED, start)
        return value

    def skip(self, stage: Stage, detail: str | None = None) -> None:
        self.outcomes.append(StageOutcome(stage=stage, status=StageStatus.SKIPPED, detail=detail))

    def skip_remaining(self) -> None:
        done = {o.stage for o in self.outcomes}
        for stage in Stage:
            if stage not in done:
                self.skip(stage)

    def _record(
        self,
        stage: Stage,
        status: StageStatus,
        start: float,
        code: str | None = None,
        detail: str | None = None,
    ) -> None:
        self.outcomes.append(
            StageOutcome(
                stage=stage,
                status=status,
                duration_ms=round((time.monotonic() - start) * 1000, 1),
                error_code=code,
                detail=detail,
            ),
        )


class Orchestrator:
    """Sequence the pipeline stages for one or many domains.

    Parameters
    ----------
    settings:
        Application settings.
    secret_store_factory:
        Returns the :class:`SecretStore` for an optional store name.
    accounts:
        Resolves the ACME account for the run's account key.
    issuer:
        Runs the ACME issuance.
    binder:
        Deploys the artifact to the target server.
    probe:
        Verifies the deployment.
    hooks:
        Optional event emitter.

    """

    def __init__(  # noqa: PLR0913
        self,
        settings: PipelineAppSettings,
        *,
        secret_store_factory: Callable[[str | None], SecretStore],
        accounts: AcmeAccountManager,
        issuer: CertificateIssuer,
        binder: DeploymentBinder,
        probe: VerificationProbe,
        hooks: HookRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._secret_store_factory = secret_store_factory
        self._accounts = accounts
        self._issuer = issuer
        self._binder = binder
        self._probe = probe
        self._hooks = hooks

    @classmethod
    def from_settings(
        cls,
        settings: PipelineAppSettings,
        hooks: HookRegistry | None = None,
    ) -> Orchestrator:
        """Wire the built-in components from *settings*."""
        from acmepipe.acme.account import AcmeAccountManager
        from acmepipe.acme.client import client_factory
        from acmepipe.acme.issuer import CertificateIssuer
        from acmepipe.deploy.binder import DeploymentBinder
        from acmepipe.deploy.registry import server_factory
        from acmepipe.deploy.verify import VerificationProbe
        from acmepipe.dns.challenge import DnsChallengeController
        from acmepipe.dns.registry import provider_factory
        from acmepipe.secrets.registry import load_secret_store

        acme_clients = client_factory(settings.http)
        servers = server_factory(settings.deploy, settings.http)
        challenges = DnsChallengeController(
            settings.dns,
            provider_factory(settings.dns, settings.http),
            hooks=hooks,
        )
        algorithm = settings.pipeline.fingerprint_algorithm

        def secret_store(name: str | None) -> SecretStore:
            return load_secret_store(settings.secrets, settings.http, store_name=name)

        return cls(
            settings,
            secret_store_factory=secret_store,
            accounts=AcmeAccountManager(settings.acme, acme_clients, hooks=hooks),
            issuer=CertificateIssuer(
                settings.acme,
                settings.dns,
                acme_clients,
                challenges,
                fingerprint_algorithm=algorithm,
                leases=LeaseRegistry("challenge", ChallengeInProgress),
                hooks=hooks,
            ),
            binder=DeploymentBinder(
                servers,
                settings=settings.deploy,
                leases=LeaseRegistry("binding update", BindingUpdateFailed),
                hooks=hooks,
            ),
            probe=VerificationProbe(
                servers,
                settings.verify,
                fingerprint_algorithm=algorithm,
                hooks=hooks,
            ),
            hooks=hooks,
        )

    # -- single domain -------------------------------------------------------

    def run(
        self,
        request: PipelineRequest,
        cancel_event: threading.Event | None = None,
    ) -> PipelineResult:
        """Run every stage for *request* and return the terminal result."""
        run = _Run(request.domain)
        artifact: CertificateArtifact | None = None
        fingerprint: str | None = None
        log.info("Starting pipeline for %s -> %s", request.domain, request.target.binding_key)

        try:
            bundle = run.stage(Stage.SECRETS, lambda: self._fetch_secrets(request))
            account = run.stage(
                Stage.ACCOUNT,
                lambda: self._resolve_account(request, bundle.account_key_material),
            )
            artifact = run.stage(
                Stage.ISSUE,
                lambda: self._issuer.issue(
                    account,
                    request.domain,
                    bundle.dns_credentials,
                    cancel_event,
                ),
            )
            fingerprint = run.stage(
                Stage.DEPLOY,
                lambda: self._binder.deploy(request.target, artifact),
            )
            run.stage(Stage.VERIFY, lambda: self._verify(request, fingerprint))
        except _StageFailed:
            run.skip_remaining()

        if fingerprint is None and artifact is not None:
            fingerprint = artifact.fingerprint
        return self._complete(run, fingerprint, artifact)

    def deploy_only(
        self,
        request: PipelineRequest,
        artifact: CertificateArtifact,
    ) -> PipelineResult:
        """Retry deployment and verification of an already issued *artifact*."""
        run = _Run(request.domain)
        for stage in (Stage.SECRETS, Stage.ACCOUNT, Stage.ISSUE):
            run.skip(stage, "reusing issued certificate")
        fingerprint: str | None = None
        try:
            fingerprint = run.stage(
                Stage.DEPLOY,
                lambda: self._binder.deploy(request.target, artifact),
            )
            run.stage(Stage.VERIFY, lambda: self._verify(request, fingerprint))
        except _StageFailed:
            run.skip_remaining()
        return self._complete(run, fingerprint or artifact.fingerprint, artifact)

    # -- batch ---------------------------------------------------------------

    def run_batch(
        self,
        requests: Iterable[PipelineRequest],
        max_workers: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> list[PipelineResult]:
        """Run independent pipelines concurrently; results keep request order."""
        requests = list(requests)
        if not requests:
            return []
        workers = max(1, min(max_workers or self._settings.pipeline.max_workers, len(requests)))
        log.info("Running %d pipeline(s) with %d worker(s)", len(requests), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="acmepipe") as pool:
            futures = [pool.submit(self.run, request, cancel_event) for request in requests]
            return [f.result() for f in futures]

    # -- stages --------------------------------------------------------------

    def _fetch_secrets(self, request: PipelineRequest) -> SecretsBundle:
        store = self._secret_store_factory(request.secret_store_name)
        return SecretProvider(store).fetch_bundle()

    def _resolve_account(
        self,
        request: PipelineRequest,
        account_key_material: str,
    ) -> AccountIdentity:
        try:
            directory_url = self._settings.acme.resolve_directory_url(
                environment=request.environment,
                directory_url=request.directory_url,
            )
        except ValueError as exc:
            raise AccountRegistrationFailed(str(exc)) from exc
        return self._accounts.ensure_account(
            directory_url,
            account_key_material,
            request.contact or None,
        )

    def _verify(self, request: PipelineRequest, fingerprint: str) -> None:
        result = self._probe.verify(request.target, fingerprint)
        if not result:
            msg = f"{request.target.binding_key} does not serve {fingerprint}: {result.reason}"
            raise VerificationMismatch(msg)

    def _complete(
        self,
        run: _Run,
        fingerprint: str | None,
        artifact: CertificateArtifact | None,
    ) -> PipelineResult:
        result = PipelineResult(
            domain=run.domain,
            stages=tuple(run.outcomes),
            fingerprint=fingerprint,
            artifact=artifact,
        )
        summary = result.summary()
        if result.succeeded:
            log.info(summary)
        else:
            log.error(summary)

        if self._hooks is not None:
            failed = result.failed_stage
            self._hooks.dispatch(
                "pipeline.completed",
                {
                    "domain": run.domain,
                    "succeeded": result.succeeded,
                    "summary": summary,
                    "failed_stage": failed.stage.value if failed else None,
                    "error_code": failed.error_code if failed else None,
                    "fingerprint": fingerprint,
                },
            )
        return result
