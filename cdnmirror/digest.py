# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Hash and HMAC helpers used by both request signers.

Keys and messages may be ``str`` (UTF-8 encoded) or ``bytes``.  Byte keys
are required for key-chain derivation, where each step is keyed with the
raw digest of the previous one.
"""

import hashlib
import hmac
from typing import Any


_ALGORITHMS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
}


def _to_bytes(value: str | bytes) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


def _digestmod(algorithm: str) -> Any:
    try:
        return _ALGORITHMS[algorithm.lower()]
    except KeyError:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}") from None


def sha256_hex(data: str | bytes) -> str:
    """Return the lowercase hex SHA-256 digest of *data*."""
    return hashlib.sha256(_to_bytes(data)).hexdigest()


def sha1_hex(data: str | bytes) -> str:
    """Return the lowercase hex SHA-1 digest of *data*."""
    return hashlib.sha1(_to_bytes(data)).hexdigest()


def hmac_digest(
    key: str | bytes, message: str | bytes, algorithm: str = "sha256"
) -> bytes:
    """Compute a raw HMAC digest.

    Args:
        key: HMAC key, either text or raw bytes from a prior HMAC step.
        message: Message to authenticate.
        algorithm: ``"sha256"`` or ``"sha1"``.

    Returns:
        Raw digest bytes.

    Raises:
        ValueError: If *algorithm* is not supported.
    """
    return hmac.new(
        _to_bytes(key), _to_bytes(message), _digestmod(algorithm)
    ).digest()


def hmac_hex(
    key: str | bytes, message: str | bytes, algorithm: str = "sha256"
) -> str:
    """Compute an HMAC digest as lowercase hex.

    See ``hmac_digest`` for arguments.
    """
    return hmac_digest(key, message, algorithm).hex()


def hmac_sha256(key: str | bytes, message: str | bytes) -> bytes:
    """HMAC-SHA256 helper."""
    return hmac_digest(key, message, "sha256")


def hmac_sha1(key: str | bytes, message: str | bytes) -> bytes:
    """HMAC-SHA1 helper."""
    return hmac_digest(key, message, "sha1")
