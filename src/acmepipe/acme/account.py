"""ACME account find-or-create.

The account is keyed strictly by the account key: the server is asked
for the account bound to the key first (``onlyReturnExisting``), and a
new registration happens only when none exists.  Running the pipeline
twice with the same key never creates a second account.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from acmepipe.core.jws import compute_thumbprint, load_account_key
from acmepipe.core.types import AccountStatus
from acmepipe.errors import AcmeProblemError, AccountRegistrationFailed
from acmepipe.models.account import AccountIdentity

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from acmepipe.acme.client import AcmeClient
    from acmepipe.config.settings import AcmeSettings
    from acmepipe.hooks.registry import HookRegistry

log = logging.getLogger(__name__)


def normalize_contact(contact: str | Iterable[str] | None) -> tuple[str, ...]:
    """Return contact URIs, adding ``mailto:`` to bare e-mail addresses."""
    if not contact:
        return ()
    items = [contact] if isinstance(contact, str) else list(contact)
    result = []
    for item in items:
        value = item.strip()
        if not value:
            continue
        if ":" not in value:
            value = f"mailto:{value}"
        result.append(value)
    return tuple(result)


class AcmeAccountManager:
    """Resolve the ACME account for an account key.

    Parameters
    ----------
    settings:
        The ``acme`` settings section (ToS agreement, EAB credentials).
    client_factory:
        Returns the :class:`AcmeClient` for a directory URL.
    hooks:
        Optional event emitter.

    """

    def __init__(
        self,
        settings: AcmeSettings,
        client_factory: Callable[[str], AcmeClient],
        hooks: HookRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._client_factory = client_factory
        self._hooks = hooks

    def ensure_account(
        self,
        directory_url: str,
        account_key_material: str,
        contact: str | Iterable[str] | None = None,
    ) -> AccountIdentity:
        """Return the account bound to the key, registering it if needed.

        Raises
        ------
        AccountKeyInvalid
            The key material cannot be parsed or is not an accepted key.
        AccountRegistrationFailed
            The server rejected the registration, or the existing
            account is deactivated or revoked.

        """
        key = load_account_key(account_key_material)
        thumbprint = compute_thumbprint(key)
        contacts = normalize_contact(contact) or normalize_contact(self._settings.contact)
        client = self._client_factory(directory_url)

        try:
            existing = client.lookup_account(key)
        except AcmeProblemError as exc:
            msg = f"Account lookup at {directory_url} failed: {exc.detail}"
            raise AccountRegistrationFailed(msg) from exc

        if existing is not None:
            account_url, body = existing
            status = _account_status(body)
            if status != AccountStatus.VALID:
                msg = f"ACME account {account_url} is {status.value} and cannot be used"
                raise AccountRegistrationFailed(msg)
            identity = AccountIdentity(
                directory_url=directory_url,
                account_id=account_url,
                key=key,
                thumbprint=thumbprint,
                contact=tuple(body.get("contact", ())),
                status=status,
                created=False,
            )
            log.info("Reusing ACME account %s", account_url)
            self._emit("account.resolved", identity)
            return identity

        try:
            account_url, body, created = client.new_account(
                key,
                contacts,
                terms_of_service_agreed=self._settings.terms_of_service_agreed,
                eab_kid=self._settings.eab_kid,
                eab_hmac_key=self._settings.eab_hmac_key,
            )
        except AcmeProblemError as exc:
            msg = f"Account registration at {directory_url} rejected: {exc.detail}"
            raise AccountRegistrationFailed(msg) from exc

        status = _account_status(body)
        if status != AccountStatus.VALID:
            msg = f"ACME account {account_url} is {status.value} and cannot be used"
            raise AccountRegistrationFailed(msg)

        identity = AccountIdentity(
            directory_url=directory_url,
            account_id=account_url,
            key=key,
            thumbprint=thumbprint,
            contact=tuple(body.get("contact", contacts)),
            status=status,
            created=created,
        )
        if created:
            log.info("Registered ACME account %s", account_url)
            self._emit("account.registration", identity)
        else:
            log.info("Server returned existing ACME account %s", account_url)
            self._emit("account.resolved", identity)
        return identity

    def _emit(self, event: str, identity: AccountIdentity) -> None:
        if self._hooks is None:
            return
        self._hooks.dispatch(
            event,
            {
                "account_id": identity.account_id,
                "directory_url": identity.directory_url,
                "contact": list(identity.contact),
                "thumbprint": identity.thumbprint,
            },
        )


def _account_status(body: dict) -> AccountStatus:
    try:
        return AccountStatus(body.get("status", AccountStatus.VALID.value))
    except ValueError:
        msg = f"ACME server returned unknown account status '{body.get('status')}'"
        raise AccountRegistrationFailed(msg) from None
