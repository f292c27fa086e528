"""Client-side state machines for issuance, challenge records and orders.

Defines the valid transitions for a single domain's issuance run, for
the lifecycle of its DNS challenge record and for the ACME order status
reported by the server (RFC 8555 §7.1.6).  All transitions are
enforced via :func:`assert_transition`.

Usage::

    from acmepipe.core.state import ISSUANCE_TRANSITIONS, assert_transition
    from acmepipe.core.types import IssuanceState

    assert_transition(
        IssuanceState.NEW_ORDER, IssuanceState.AUTHORIZATION_PENDING,
        ISSUANCE_TRANSITIONS,
    )
"""

from __future__ import annotations

import logging

from acmepipe.core.types import ChallengeState, IssuanceState, OrderStatus

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Issuance: linear happy path, failed reachable from every non-terminal
# state.  An authorization that is already valid skips straight to
# finalizing.  certificate_ready & failed are terminal.
# ---------------------------------------------------------------------------

ISSUANCE_TRANSITIONS: dict[IssuanceState, frozenset[IssuanceState]] = {
    IssuanceState.NEW_ORDER: frozenset(
        {IssuanceState.AUTHORIZATION_PENDING, IssuanceState.FAILED},
    ),
    IssuanceState.AUTHORIZATION_PENDING: frozenset(
        {
            IssuanceState.CHALLENGE_PROVISIONED,
            IssuanceState.FINALIZING,
            IssuanceState.FAILED,
        }
    ),
    IssuanceState.CHALLENGE_PROVISIONED: frozenset(
        {IssuanceState.AWAITING_VALIDATION, IssuanceState.FAILED},
    ),
    IssuanceState.AWAITING_VALIDATION: frozenset(
        {IssuanceState.FINALIZING, IssuanceState.FAILED},
    ),
    IssuanceState.FINALIZING: frozenset(
        {IssuanceState.CERTIFICATE_READY, IssuanceState.FAILED},
    ),
    IssuanceState.CERTIFICATE_READY: frozenset(),
    IssuanceState.FAILED: frozenset(),
}

# ---------------------------------------------------------------------------
# Challenge record: pending → created → propagation_confirmed → cleaned.
# Cleanup is reachable from every state so failure paths can tear down.
# ---------------------------------------------------------------------------

CHALLENGE_TRANSITIONS: dict[ChallengeState, frozenset[ChallengeState]] = {
    ChallengeState.PENDING: frozenset({ChallengeState.CREATED, ChallengeState.CLEANED}),
    ChallengeState.CREATED: frozenset(
        {ChallengeState.PROPAGATION_CONFIRMED, ChallengeState.CLEANED},
    ),
    ChallengeState.PROPAGATION_CONFIRMED: frozenset({ChallengeState.CLEANED}),
    ChallengeState.CLEANED: frozenset(),
}

# ---------------------------------------------------------------------------
# ACME order, as reported by the server.  Finalizing a ready order may
# answer valid at once.  An order can turn invalid from any open state.
# ---------------------------------------------------------------------------

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.READY, OrderStatus.INVALID}),
    OrderStatus.READY: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.VALID, OrderStatus.INVALID},
    ),
    OrderStatus.PROCESSING: frozenset({OrderStatus.VALID, OrderStatus.INVALID}),
    OrderStatus.VALID: frozenset(),
    OrderStatus.INVALID: frozenset(),
}


def assert_transition(
    current: IssuanceState | ChallengeState | OrderStatus,
    target: IssuanceState | ChallengeState | OrderStatus,
    table: dict,
) -> None:
    """Raise :class:`ValueError` if *current* → *target* is not allowed.

    Parameters
    ----------
    current:
        The current state.
    target:
        The desired new state.
    table:
        :data:`ISSUANCE_TRANSITIONS`, :data:`CHALLENGE_TRANSITIONS` or
        :data:`ORDER_TRANSITIONS`.

    """
    allowed = table.get(current)
    if allowed is None:
        msg = f"Unknown state {current!r}"
        raise ValueError(msg)
    if target not in allowed:
        msg = (
            f"Invalid transition {current.value!r} -> {target.value!r}; "
            f"allowed targets: {sorted(s.value for s in allowed) or '(terminal)'}"
        )
        raise ValueError(msg)


def is_terminal(state: IssuanceState | ChallengeState | OrderStatus, table: dict) -> bool:
    """Return whether *state* has no outgoing transitions in *table*."""
    return not table.get(state)


def log_transition(
    resource_type: str,
    resource_id,
    from_state,
    to_state,
    *,
    reason: str | None = None,
) -> None:
    """Emit a structured log entry for a state transition.

    Parameters
    ----------
    resource_type:
        ``"issuance"``, ``"challenge"`` or ``"order"``.
    resource_id:
        Usually the domain name.
    from_state:
        The previous state.
    to_state:
        The new state.
    reason:
        Optional human-readable reason for the transition.

    """
    extra = {
        "event": "state_transition",
        "resource_type": resource_type,
        "resource_id": str(resource_id),
        "from_state": from_state.value if hasattr(from_state, "value") else str(from_state),
        "to_state": to_state.value if hasattr(to_state, "value") else str(to_state),
    }
    if reason:
        extra["reason"] = reason
    log.info(
        "%s %s: %s -> %s%s",
        resource_type,
        resource_id,
        extra["from_state"],
        extra["to_state"],
        f" ({reason})" if reason else "",
        extra=extra,
    )
