"""Error taxonomy for the certificate pipeline.

Every failure a stage can surface is a subclass of :class:`PipelineError`.
Each class carries a stable :attr:`PipelineError.code` used by the
orchestrator when reporting the terminal status of a domain, and a
``retryable`` flag distinguishing transient infrastructure faults from
semantic rejections.

Transient errors are retried inside the component that owns the
external call; semantic errors propagate to the orchestrator unchanged.
"""

from __future__ import annotations

from typing import ClassVar


class PipelineError(Exception):
    """Base class for all pipeline failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient and the operation may be retried.

    """

    code: ClassVar[str] = "pipelineError"

    def __init__(self, detail: str, *, retryable: bool = False) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


class SecretNotFound(PipelineError):
    """One or more requested secrets are absent from the store."""

    code = "secretNotFound"

    def __init__(self, names: list[str] | tuple[str, ...]) -> None:
        self.names = tuple(names)
        super().__init__(f"Secret(s) not found: {', '.join(self.names)}")


class SecretStoreUnavailable(PipelineError):
    code = "secretStoreUnavailable"


# ---------------------------------------------------------------------------
# ACME account
# ---------------------------------------------------------------------------


class AccountKeyInvalid(PipelineError):
    code = "accountKeyInvalid"


class AccountRegistrationFailed(PipelineError):
    code = "accountRegistrationFailed"


# ---------------------------------------------------------------------------
# DNS challenge
# ---------------------------------------------------------------------------


class DnsProviderError(PipelineError):
    """Generic DNS provider fault (transport, 5xx, unexpected response)."""

    code = "dnsProviderError"


class DnsProviderAuthFailed(DnsProviderError):
    code = "dnsProviderAuthFailed"


class DnsRecordCreateFailed(DnsProviderError):
    code = "dnsRecordCreateFailed"


class DnsPropagationTimeout(PipelineError):
    code = "dnsPropagationTimeout"


class ChallengeInProgress(PipelineError):
    """Another challenge for the same domain is already in flight."""

    code = "challengeInProgress"


# ---------------------------------------------------------------------------
# ACME order / issuance
# ---------------------------------------------------------------------------


class AcmeProblemError(PipelineError):
    """ACME server returned a problem document or could not be reached.

    Parameters
    ----------
    detail:
        Human-readable description.
    problem_type:
        The RFC 8555 problem ``type`` URN, when known.
    status:
        HTTP status code, when known.
    retryable:
        Whether a retry may succeed.

    """

    code = "acmeProblem"

    def __init__(
        self,
        detail: str,
        *,
        problem_type: str | None = None,
        status: int | None = None,
        retryable: bool = False,
    ) -> None:
        self.problem_type = problem_type
        self.status = status
        super().__init__(detail, retryable=retryable)


class CertificateIssuanceFailed(PipelineError):
    """Issuance did not produce a certificate.

    ``reason`` mirrors ``detail`` and is kept for reporting.
    """

    code = "certificateIssuanceFailed"

    @property
    def reason(self) -> str:
        return self.detail


class AcmeValidationInvalid(CertificateIssuanceFailed):
    code = "acmeValidationInvalid"


class AcmeValidationTimeout(CertificateIssuanceFailed):
    code = "acmeValidationTimeout"


# ---------------------------------------------------------------------------
# Deployment / verification
# ---------------------------------------------------------------------------


class TargetServerError(PipelineError):
    """Transient or unexpected target server API fault."""

    code = "targetServerError"


class CertificateImportFailed(PipelineError):
    code = "certificateImportFailed"


class SiteNotFound(PipelineError):
    code = "siteNotFound"


class BindingUpdateFailed(PipelineError):
    code = "bindingUpdateFailed"


class VerificationMismatch(PipelineError):
    code = "verificationMismatch"


# ---------------------------------------------------------------------------
# Control
# ---------------------------------------------------------------------------


class Cancelled(PipelineError):
    code = "cancelled"
