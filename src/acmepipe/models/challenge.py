"""DNS-01 challenge record."""

from __future__ import annotations

from dataclasses import dataclass

from acmepipe.core.types import ChallengeState

CHALLENGE_LABEL = "_acme-challenge"


def challenge_record_name(domain: str) -> str:
    """Return ``_acme-challenge.<domain>`` (wildcard prefix stripped)."""
    return f"{CHALLENGE_LABEL}.{domain.removeprefix('*.').rstrip('.').lower()}"


@dataclass(frozen=True)
class ChallengeRecord:
    domain: str
    token: str
    record_name: str
    record_value: str
    state: ChallengeState = ChallengeState.PENDING
    ttl: int = 60

    @property
    def is_live(self) -> bool:
        return self.state in (ChallengeState.CREATED, ChallengeState.PROPAGATION_CONFIRMED)
