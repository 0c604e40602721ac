# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""TC3-HMAC-SHA256 request signing for Tencent Cloud APIs.

The signature is computed in four fixed steps:

1. Canonical request: method, URI, query, canonical headers, signed
   header list and the SHA-256 of the payload, joined by newlines.
2. String to sign: algorithm, Unix timestamp, credential scope
   (``<date>/<service>/tc3_request``) and the SHA-256 of the canonical
   request.
3. Signing key: ``HMAC("TC3" + secret, date)`` -> ``HMAC(., service)``
   -> ``HMAC(., "tc3_request")``.
4. Signature: hex ``HMAC(signing key, string to sign)``.

The date is the UTC calendar date of the timestamp, formatted
``YYYY-MM-DD``.  The server recomputes every step independently, so any
deviation in the literals below invalidates the signature.
"""

import re
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from urllib.parse import quote

from cdnmirror.digest import hmac_hex, hmac_sha256, sha256_hex
from cdnmirror.errors import InputValidationError, SigningPreconditionError
from cdnmirror.signing.base import Credential, SignableRequest


ALGORITHM = "TC3-HMAC-SHA256"

#: Key-chain prefix and scope terminator (protocol constants).
_KEY_PREFIX = "TC3"
_SCOPE_TERMINATOR = "tc3_request"

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def canonical_headers(
    headers: Mapping[str, str | None],
) -> tuple[str, str]:
    """Build the canonical headers block and the signed header list.

    Keys are lowercased and sorted, values are trimmed.  Headers whose
    value is None are skipped.  Input map order has no effect.

    Args:
        headers: Headers to sign (name -> value).

    Returns:
        Tuple of (canonical headers, signed headers).  The canonical block
        is one ``key:value\\n`` line per header; the signed header list
        is the same keys joined with ``;``.
    """
    lowered: dict[str, str] = {}
    for name, value in headers.items():
        if value is None:
            continue
        lowered[name.lower().strip()] = str(value).strip()

    keys = sorted(lowered)
    block = "".join(f"{key}:{lowered[key]}\n" for key in keys)
    return block, ";".join(keys)


def build_canonical_request(
    method: str,
    uri: str,
    query: str,
    headers: Mapping[str, str | None],
    payload: bytes | str,
) -> str:
    """Build the canonical request string.

    The canonical headers block ends with a newline of its own, so the
    join leaves an empty line before the signed header list.

    Args:
        method: HTTP method (uppercased here).
        uri: Canonical URI, ``/`` for the API gateway.
        query: Canonical query string, empty for POST.
        headers: Headers to sign.
        payload: Request body exactly as sent.

    Returns:
        Canonical request string.
    """
    block, signed = canonical_headers(headers)
    return "\n".join(
        [
            method.upper(),
            uri or "/",
            query,
            block,
            signed,
            sha256_hex(payload),
        ]
    )


def credential_scope(date: str, service: str) -> str:
    """Return the credential scope ``<date>/<service>/tc3_request``."""
    return f"{date}/{service}/{_SCOPE_TERMINATOR}"


def build_string_to_sign(
    timestamp: int, scope: str, canonical_request: str
) -> str:
    """Build the TC3 string to sign.

    Args:
        timestamp: Unix timestamp (seconds), same as ``X-TC-Timestamp``.
        scope: Credential scope.
        canonical_request: The canonical request string.

    Returns:
        String to sign.
    """
    return "\n".join(
        [
            ALGORITHM,
            str(timestamp),
            scope,
            sha256_hex(canonical_request),
        ]
    )


# ---------------------------------------------------------------------------
# Key derivation and signature
# ---------------------------------------------------------------------------


def utc_date(timestamp: int) -> str:
    """Return the UTC date (``YYYY-MM-DD``) of a Unix timestamp."""
    return datetime.fromtimestamp(timestamp, tz=UTC).strftime("%Y-%m-%d")


def _check_date(date: str) -> None:
    if not date or not _DATE_RE.match(date):
        raise InputValidationError(
            f"Invalid signing date {date!r}: expected YYYY-MM-DD"
        )


def derive_signing_key(secret_key: str, date: str, service: str) -> bytes:
    """Derive the date- and service-scoped TC3 signing key.

    Args:
        secret_key: Tencent Cloud secret key.
        date: Date string (``YYYY-MM-DD``).
        service: Service name (e.g. ``teo``).

    Returns:
        Derived signing key bytes.

    Raises:
        SigningPreconditionError: If *secret_key* is empty.
        InputValidationError: If *date* is malformed.
    """
    if not secret_key:
        raise SigningPreconditionError("Missing Tencent Cloud secret key")
    _check_date(date)
    k_date = hmac_sha256(_KEY_PREFIX + secret_key, date)
    k_service = hmac_sha256(k_date, service)
    return hmac_sha256(k_service, _SCOPE_TERMINATOR)


def sign(secret_key: str, date: str, service: str, string_to_sign: str) -> str:
    """Compute the hex TC3 signature of *string_to_sign*."""
    signing_key = derive_signing_key(secret_key, date, service)
    return hmac_hex(signing_key, string_to_sign)


def build_authorization(
    secret_id: str, scope: str, signed_headers: str, signature: str
) -> str:
    """Format the ``Authorization`` header value."""
    return (
        f"{ALGORITHM} Credential={secret_id}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )


# ---------------------------------------------------------------------------
# Signer
# ---------------------------------------------------------------------------


class Tc3Signer:
    """Signs Tencent Cloud API requests with TC3-HMAC-SHA256.

    Every header in the request description is signed; callers pass only
    the headers they want covered (``content-type`` and ``host`` for the
    API gateway).

    Attributes:
        credential: Secret id/key pair.
        service: Service name used in the credential scope.
    """

    def __init__(self, credential: Credential, service: str) -> None:
        if not service:
            raise InputValidationError("TC3 signing requires a service name")
        self.credential = credential
        self.service = service

    def authorize(
        self, request: SignableRequest, now: int | None = None
    ) -> str:
        """Return the ``Authorization`` header value for *request*.

        Args:
            request: Request to sign.
            now: Unix timestamp to sign at.  Must equal the value sent in
                ``X-TC-Timestamp``.  Defaults to the current time.

        Raises:
            SigningPreconditionError: If the credential is incomplete.
        """
        if not self.credential.is_complete:
            raise SigningPreconditionError(
                "Missing Tencent Cloud credentials"
            )
        timestamp = int(time.time()) if now is None else int(now)
        date = utc_date(timestamp)

        canonical = build_canonical_request(
            request.method,
            request.path,
            _canonical_query(request.query),
            request.headers,
            request.body,
        )
        _, signed_headers = canonical_headers(request.headers)
        scope = credential_scope(date, self.service)
        string_to_sign = build_string_to_sign(timestamp, scope, canonical)
        signature = sign(
            self.credential.secret_key, date, self.service, string_to_sign
        )
        return build_authorization(
            self.credential.secret_id, scope, signed_headers, signature
        )


def _canonical_query(query: Mapping[str, str]) -> str:
    return "&".join(
        f"{quote(str(k), safe='')}={quote(str(v), safe='')}"
        for k, v in sorted(query.items())
    )
