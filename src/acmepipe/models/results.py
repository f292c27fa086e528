"""Per-stage and per-domain pipeline outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from acmepipe.core.types import Stage, StageStatus

if TYPE_CHECKING:
    from acmepipe.models.certificate import CertificateArtifact

_STAGE_LABELS = {
    Stage.SECRETS: "secret retrieval",
    Stage.ACCOUNT: "account resolution",
    Stage.ISSUE: "issuance",
    Stage.DEPLOY: "deployment",
    Stage.VERIFY: "verification",
}


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a verification probe; truthy iff the binding matches."""

    ok: bool
    reason: str | None = None
    observed_fingerprint: str | None = None

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class StageOutcome:
    stage: Stage
    status: StageStatus
    duration_ms: float = 0.0
    error_code: str | None = None
    detail: str | None = None


@dataclass(frozen=True)
class PipelineResult:
    """Terminal status of one domain's pipeline run.

    ``artifact`` is kept even when a later stage failed so a deployment
    can be retried without re-issuing.
    """

    domain: str
    stages: tuple[StageOutcome, ...]
    fingerprint: str | None = None
    artifact: CertificateArtifact | None = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        if len(self.stages) != len(Stage) or self.failed_stage is not None:
            return False
        return self.stages[-1].stage == Stage.VERIFY and (
            self.stages[-1].status == StageStatus.SUCCEEDED
        )

    @property
    def failed_stage(self) -> StageOutcome | None:
        for outcome in self.stages:
            if outcome.status == StageStatus.FAILED:
                return outcome
        return None

    def outcome(self, stage: Stage) -> StageOutcome | None:
        for outcome in self.stages:
            if outcome.stage == stage:
                return outcome
        return None

    @property
    def certificate_issued(self) -> bool:
        return self.artifact is not None

    def summary(self) -> str:
        """One-line human summary that states partial progress explicitly."""
        failed = self.failed_stage
        if failed is None:
            issue = self.outcome(Stage.ISSUE)
            if self.succeeded and issue is not None and issue.status == StageStatus.SKIPPED:
                return f"{self.domain}: existing certificate deployed and verified"
            if self.succeeded:
                return f"{self.domain}: certificate issued, deployed and verified"
            return f"{self.domain}: incomplete"
        prefix = ""
        if self.certificate_issued and failed.stage != Stage.ISSUE:
            prefix = "certificate issued, "
        return (
            f"{self.domain}: {prefix}{_STAGE_LABELS[failed.stage]} failed "
            f"[{failed.error_code}] {failed.detail}"
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "succeeded": self.succeeded,
            "fingerprint": self.fingerprint,
            "certificate_issued": self.certificate_issued,
            "stages": [
                {
                    "stage": s.stage.value,
                    "status": s.status.value,
                    "duration_ms": s.duration_ms,
                    "error_code": s.error_code,
                    "detail": s.detail,
                }
                for s in self.stages
            ],
        }
