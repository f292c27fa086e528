"""ACME order and authorization snapshots (client view)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from acmepipe.core.types import AuthorizationStatus, OrderStatus


@dataclass(frozen=True)
class Order:
    domain: str
    url: str
    status: OrderStatus
    authorization_urls: tuple[str, ...]
    finalize_url: str
    certificate_url: str | None = None
    error: dict[str, Any] | None = None

    @classmethod
    def from_response(cls, domain: str, url: str, body: dict[str, Any]) -> Order:
        return cls(
            domain=domain,
            url=url,
            status=OrderStatus(body.get("status", "pending")),
            authorization_urls=tuple(body.get("authorizations", ())),
            finalize_url=body.get("finalize", ""),
            certificate_url=body.get("certificate"),
            error=body.get("error"),
        )


@dataclass(frozen=True)
class Authorization:
    url: str
    domain: str
    status: AuthorizationStatus
    challenges: tuple[dict[str, Any], ...] = field(default=(), repr=False)
    wildcard: bool = False

    @classmethod
    def from_response(cls, url: str, body: dict[str, Any]) -> Authorization:
        identifier = body.get("identifier") or {}
        return cls(
            url=url,
            domain=identifier.get("value", ""),
            status=AuthorizationStatus(body.get("status", "pending")),
            challenges=tuple(body.get("challenges", ())),
            wildcard=bool(body.get("wildcard", False)),
        )

    def challenge(self, challenge_type: str) -> dict[str, Any] | None:
        """Return the first challenge object of *challenge_type*, if offered."""
        for ch in self.challenges:
            if ch.get("type") == challenge_type:
                return ch
        return None

    def error_detail(self) -> str | None:
        """Return the first challenge error detail reported by the server."""
        for ch in self.challenges:
            err = ch.get("error")
            if err:
                return err.get("detail") or err.get("type")
        return None
