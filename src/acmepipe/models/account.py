"""ACME account identity."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from acmepipe.core.types import AccountStatus

if TYPE_CHECKING:
    import josepy as jose


@dataclass(frozen=True)
class AccountIdentity:
    """An ACME account bound to one directory and one account key.

    The identity is the signing context for every request of a run and
    is passed explicitly to the issuer.  ``account_id`` is the account
    URL assigned by the server (used as the JWS ``kid``).
    """

    directory_url: str
    account_id: str
    key: jose.JWK = field(repr=False, compare=False)
    thumbprint: str
    contact: tuple[str, ...] = ()
    status: AccountStatus = AccountStatus.VALID
    created: bool = False
