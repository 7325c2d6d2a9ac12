"""Ed25519 request signing (PyNaCl) and the ``UserSig`` header format.

A signed request carries three headers::

    Authorization: UserSig <user_id>:<hex signature>
    X-Timestamp:   <timezone-aware ISO-8601>
    X-Nonce:       <random hex, optional, single use>

The signature covers the canonical request: timestamp, method, path and the
SHA-256 of the raw body, one per line.
"""

import hashlib
import secrets
import uuid
from datetime import UTC, datetime

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

AUTH_SCHEME = "UserSig"
TIMESTAMP_HEADER = "X-Timestamp"
NONCE_HEADER = "X-Nonce"


class AuthorizationFormatError(ValueError):
    """The Authorization header is not a well-formed ``UserSig`` credential."""


def new_keypair() -> tuple[str, str]:
    """Return (private_key_hex, public_key_hex)."""
    key = SigningKey.generate()
    return (
        key.encode(encoder=HexEncoder).decode(),
        key.verify_key.encode(encoder=HexEncoder).decode(),
    )


def is_valid_public_key(public_key_hex: str) -> bool:
    try:
        VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
    except (ValueError, TypeError):
        return False
    return True


def canonical_request(timestamp: str, method: str, path: str, body: bytes) -> bytes:
    digest = hashlib.sha256(body).hexdigest()
    return "\n".join((timestamp, method.upper(), path, digest)).encode()


def sign_request(private_key_hex: str, timestamp: str, method: str, path: str, body: bytes) -> str:
    key = SigningKey(private_key_hex.encode(), encoder=HexEncoder)
    signed = key.sign(canonical_request(timestamp, method, path, body), encoder=HexEncoder)
    return signed.signature.decode()


def signature_is_valid(
    public_key_hex: str,
    signature_hex: str,
    timestamp: str,
    method: str,
    path: str,
    body: bytes,
) -> bool:
    try:
        key = VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
        key.verify(
            canonical_request(timestamp, method, path, body),
            HexEncoder.decode(signature_hex.encode()),
        )
    except (BadSignatureError, ValueError, TypeError):
        return False
    return True


def new_nonce() -> str:
    return secrets.token_hex(16)


def signed_headers(
    user_id: str | uuid.UUID,
    private_key_hex: str,
    method: str,
    path: str,
    body: bytes = b"",
    timestamp: str | None = None,
) -> dict[str, str]:
    """Headers that authenticate one request as ``user_id``. A fresh nonce each call."""
    timestamp = timestamp or datetime.now(UTC).isoformat()
    signature = sign_request(private_key_hex, timestamp, method, path, body)
    return {
        "Authorization": f"{AUTH_SCHEME} {user_id}:{signature}",
        TIMESTAMP_HEADER: timestamp,
        NONCE_HEADER: new_nonce(),
    }


def parse_authorization(header: str) -> tuple[uuid.UUID, str]:
    """Split ``UserSig <user_id>:<signature>`` into its parts."""
    scheme, _, credentials = header.partition(" ")
    if scheme != AUTH_SCHEME or not credentials:
        raise AuthorizationFormatError("Invalid authorization scheme")
    user_id, sep, signature = credentials.partition(":")
    if not sep or not signature:
        raise AuthorizationFormatError("Malformed authorization header")
    try:
        return uuid.UUID(user_id), signature
    except ValueError:
        raise AuthorizationFormatError("Malformed authorization header")


def timestamp_is_fresh(timestamp: str, max_age_seconds: int = 30) -> bool:
    """Timezone-aware ISO-8601 timestamp within max_age_seconds of now (either side)."""
    try:
        ts = datetime.fromisoformat(timestamp)
    except (ValueError, TypeError):
        return False
    if ts.tzinfo is None:
        return False
    return abs((datetime.now(UTC) - ts).total_seconds()) <= max_age_seconds
