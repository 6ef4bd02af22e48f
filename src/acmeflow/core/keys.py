"""Account key material, JWK thumbprints and key authorizations.

The account key is read-only during an issuance flow and may be shared
across concurrent resolvers.

Usage::

    from acmeflow.core.keys import AccountKey

    account = AccountKey(private_key)
    account.key_authorization("abc")   # "abc.<thumbprint>"
"""

from __future__ import annotations

import base64
import hashlib
import json
from functools import cached_property
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa


# JWK curve names for the supported EC curves (RFC 7518 §6.2.1.1)
_EC_CURVE_NAMES: dict[str, tuple[str, int]] = {
    "secp256r1": ("P-256", 32),
    "secp384r1": ("P-384", 48),
    "secp521r1": ("P-521", 66),
}


# --- Base64url helpers (RFC 7515 §2) -------------------------------------


def b64url_encode(b: bytes) -> str:
    """Encode bytes to base64url without padding."""
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def _int_to_b64url(value: int, length: int | None = None) -> str:
    if length is None:
        length = max(1, (value.bit_length() + 7) // 8)
    return b64url_encode(value.to_bytes(length, "big"))


# --- JWK ------------------------------------------------------------------


def public_jwk(public_key: Any) -> dict[str, str]:  # noqa: ANN401
    """Build the public JWK dictionary for an RSA, EC or Ed25519 key.

    Raises
    ------
    ValueError
        If the key type or curve is not supported.

    """
    if isinstance(public_key, rsa.RSAPublicKey):
        nums = public_key.public_numbers()
        return {
            "kty": "RSA",
            "n": _int_to_b64url(nums.n),
            "e": _int_to_b64url(nums.e),
        }
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        try:
            crv, size = _EC_CURVE_NAMES[public_key.curve.name]
        except KeyError:
            msg = f"Unsupported EC curve '{public_key.curve.name}'"
            raise ValueError(msg) from None
        nums = public_key.public_numbers()
        return {
            "kty": "EC",
            "crv": crv,
            "x": _int_to_b64url(nums.x, size),
            "y": _int_to_b64url(nums.y, size),
        }
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        raw = public_key.public_bytes(
            serialization.Encoding.Raw,
            serialization.PublicFormat.Raw,
        )
        return {"kty": "OKP", "crv": "Ed25519", "x": b64url_encode(raw)}
    msg = f"Unsupported account key type {type(public_key).__name__}"
    raise ValueError(msg)


# --- JWK thumbprint (RFC 7638) -------------------------------------------


def compute_thumbprint(jwk_dict: dict[str, Any]) -> str:
    """Compute the RFC 7638 JWK Thumbprint using SHA-256.

    Construct the canonical JSON representation with required members
    in lexicographic order, then return the base64url-encoded SHA-256
    hash.

    Parameters
    ----------
    jwk_dict:
        The JWK dictionary.

    Returns
    -------
    str
        Base64url-encoded thumbprint.

    """
    kty = jwk_dict.get("kty")

    if kty == "RSA":
        canonical = {"e": jwk_dict["e"], "kty": "RSA", "n": jwk_dict["n"]}
    elif kty == "EC":
        canonical = {
            "crv": jwk_dict["crv"],
            "kty": "EC",
            "x": jwk_dict["x"],
            "y": jwk_dict["y"],
        }
    elif kty == "OKP":
        canonical = {"crv": jwk_dict["crv"], "kty": "OKP", "x": jwk_dict["x"]}
    else:
        msg = f"Cannot compute thumbprint for kty '{kty}'"
        raise ValueError(msg)

    # RFC 7638 requires members in lexicographic order, no whitespace
    canonical_json = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical_json.encode("ascii")).digest()
    return b64url_encode(digest)


# --- Key authorization (RFC 8555 §8.1) ------------------------------------


def key_authorization(token: str, jwk_dict: dict[str, Any]) -> str:
    """Compute the key authorization string: ``token.thumbprint``."""
    return f"{token}.{compute_thumbprint(jwk_dict)}"


class AccountKey:
    """Read-only view of the ACME account key.

    Parameters
    ----------
    private_key:
        A ``cryptography`` RSA, EC or Ed25519 private key.

    """

    def __init__(self, private_key: Any) -> None:  # noqa: ANN401
        self._private_key = private_key

    @classmethod
    def from_pem(cls, data: bytes, password: bytes | None = None) -> AccountKey:
        """Load an account key from PEM bytes."""
        return cls(serialization.load_pem_private_key(data, password=password))

    @property
    def private_key(self) -> Any:  # noqa: ANN401
        return self._private_key

    @cached_property
    def jwk(self) -> dict[str, str]:
        """Public JWK of the account key."""
        return public_jwk(self._private_key.public_key())

    @cached_property
    def thumbprint(self) -> str:
        """RFC 7638 SHA-256 thumbprint of :attr:`jwk`."""
        return compute_thumbprint(self.jwk)

    def key_authorization(self, token: str) -> str:
        """Key authorization for *token* bound to this account."""
        return f"{token}.{self.thumbprint}"

    def __repr__(self) -> str:
        return f"<AccountKey kty={self.jwk['kty']} thumbprint={self.thumbprint}>"
