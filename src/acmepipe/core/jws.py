"""Account key loading and dns-01 helpers on top of ``josepy``.

Account keys arrive as PEM from the secret store and never touch disk:
they are parsed with ``cryptography``, checked against the key types an
ACME server accepts, and wrapped in a :class:`josepy.JWK` which the
``acme`` library signs every request with.

Security note:
    This module handles raw account key material.  Nothing here may
    log key bytes.
"""

from __future__ import annotations

import josepy as jose
from acme import challenges
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from acmepipe.errors import AccountKeyInvalid, AcmeProblemError

_MIN_RSA_KEY_SIZE = 2048

# Maps curve name to (JWA signature algorithm, JWK curve name)
_EC_ALGORITHMS: dict[str, tuple[jose.JWASignature, str]] = {
    "secp256r1": (jose.ES256, "P-256"),
    "secp384r1": (jose.ES384, "P-384"),
}


def load_account_key(material: str | bytes) -> jose.JWK:
    """Parse PEM account key material into a private :class:`josepy.JWK`.

    Parameters
    ----------
    material:
        PEM-encoded RSA (>= 2048 bits) or EC (P-256 / P-384) private key.

    Raises
    ------
    AccountKeyInvalid
        If the material is empty, cannot be parsed, or uses an
        unsupported key type or size.

    """
    if not material:
        msg = "Account key material is empty"
        raise AccountKeyInvalid(msg)

    data = material.encode("ascii", errors="replace") if isinstance(material, str) else material
    try:
        key = serialization.load_pem_private_key(data.strip() + b"\n", password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        msg = f"Account key material could not be parsed: {type(exc).__name__}"
        raise AccountKeyInvalid(msg) from exc

    if isinstance(key, rsa.RSAPrivateKey):
        if key.key_size < _MIN_RSA_KEY_SIZE:
            msg = f"RSA account key too small ({key.key_size} bits, minimum {_MIN_RSA_KEY_SIZE})"
            raise AccountKeyInvalid(msg)
        return jose.JWKRSA(key=key)
    if isinstance(key, ec.EllipticCurvePrivateKey):
        if key.curve.name not in _EC_ALGORITHMS:
            supported = sorted(crv for _, crv in _EC_ALGORITHMS.values())
            msg = (
                f"Unsupported EC curve '{key.curve.name}' for account key; "
                f"supported: {supported}"
            )
            raise AccountKeyInvalid(msg)
        return jose.JWKEC(key=key)

    msg = f"Unsupported account key type: {type(key).__name__}"
    raise AccountKeyInvalid(msg)


def signing_algorithm(key: jose.JWK) -> jose.JWASignature:
    """Return the JWA algorithm the account *key* signs with."""
    if isinstance(key, jose.JWKEC):
        return _EC_ALGORITHMS[key.key.curve.name][0]
    return jose.RS256


def compute_thumbprint(key: jose.JWK) -> str:
    """Return the base64url RFC 7638 SHA-256 thumbprint of *key*."""
    return jose.b64encode(key.thumbprint()).decode("ascii")


def dns01_challenge(token: str) -> challenges.DNS01:
    """Build the dns-01 challenge object for a server-issued *token*."""
    try:
        return challenges.DNS01(token=jose.decode_b64jose(token))
    except jose.DeserializationError as exc:
        msg = f"ACME server sent a dns-01 token that is not base64url: {exc}"
        raise AcmeProblemError(msg) from exc


def dns01_txt_value(token: str, key: jose.JWK) -> str:
    """Return the TXT record value proving control for a dns-01 challenge.

    The value is the base64url SHA-256 digest of the key authorization
    ``token.thumbprint`` (RFC 8555 §8.4).
    """
    return dns01_challenge(token).validation(key)
