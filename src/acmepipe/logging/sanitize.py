"""Redaction of secrets before anything is logged or handed to a hook.

The pipeline carries three kinds of secret material around: the
secret-store values (account key, DNS credential, target auth), the
issued private key with its PKCS#12 passphrase, and the account JWK.
:func:`sanitize_for_logs` removes all three from arbitrary nested data
while leaving names, key types and fingerprints readable.
"""

from __future__ import annotations

import re
from typing import Any

_REDACTED = "[REDACTED]"

# RSA, EC and symmetric JWK members carrying key material.
_JWK_MATERIAL = frozenset({"n", "e", "x", "y", "d", "p", "q", "dp", "dq", "qi", "k"})

_SECRET_KEYS = frozenset(
    {
        "passphrase",
        "password",
        "credential",
        "credentials",
        "dns_provider_credential",
        "account_key_material",
        "private_key_pem",
        "bundle",
        "token_value",
        "auth_value",
        "vault_token",
        "eab_hmac_key",
    },
)

_PEM_BLOCK = re.compile(
    r"(?P<begin>-----BEGIN [A-Z0-9 ]+-----).*?(?P<end>-----END [A-Z0-9 ]+-----)",
    re.DOTALL,
)


def sanitize_jwk(jwk: dict) -> dict:
    """Copy *jwk*, keeping only descriptive members such as ``kty`` and ``crv``."""
    return {name: (_REDACTED if name in _JWK_MATERIAL else value) for name, value in jwk.items()}


def sanitize_pem(pem: str) -> str:
    """Blank out the body of every PEM block in *pem*, keeping its armour lines."""
    return _PEM_BLOCK.sub(lambda m: f"{m['begin']}\n{_REDACTED}\n{m['end']}", pem)


def sanitize_for_logs(data: Any) -> Any:  # noqa: ANN401
    """Return a redacted copy of *data*.

    Mappings with a ``kty`` member are treated as JWKs; values under a
    secret-named key are replaced unless ``None``; PEM text is blanked;
    raw bytes are reduced to their length.
    """
    if isinstance(data, dict):
        if "kty" in data:
            return sanitize_jwk(data)
        return {
            key: (
                _REDACTED
                if key in _SECRET_KEYS and value is not None
                else sanitize_for_logs(value)
            )
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return type(data)(sanitize_for_logs(item) for item in data)
    if isinstance(data, (bytes, bytearray)):
        return f"<{len(data)} bytes>"
    if isinstance(data, str) and "-----BEGIN " in data:
        return sanitize_pem(data)
    return data
