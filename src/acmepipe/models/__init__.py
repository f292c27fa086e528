"""Data model for the certificate pipeline.

All models are frozen dataclasses.  Use :func:`dataclasses.replace`
for modifications (copy-on-write).  Fields holding key material or
secrets are excluded from ``repr`` so they never reach a log line.
"""

from acmepipe.models.account import AccountIdentity
from acmepipe.models.binding import Binding, DeploymentTarget
from acmepipe.models.certificate import CertificateArtifact
from acmepipe.models.challenge import ChallengeRecord
from acmepipe.models.order import Authorization, Order
from acmepipe.models.results import PipelineResult, StageOutcome, VerificationResult
from acmepipe.models.secrets import DnsCredentials, SecretsBundle

__all__ = [
    "AccountIdentity",
    "Authorization",
    "Binding",
    "CertificateArtifact",
    "ChallengeRecord",
    "DeploymentTarget",
    "DnsCredentials",
    "Order",
    "PipelineResult",
    "SecretsBundle",
    "StageOutcome",
    "VerificationResult",
]
