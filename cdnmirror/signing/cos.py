# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""COS V5 (XML API) request signing for Tencent Cloud object storage.

The authorization value is a query-string-like list of ``q-*`` fields:

1. ``sign_time = "<start>;<end>"`` and ``sign_key = hex(HMAC-SHA1(secret,
   sign_time))``.  The hex string itself keys the next step.
2. ``http_string = method \\n path \\n params \\n headers \\n`` with
   lowercase sorted keys and ``key=urlencode(value)`` pairs.
3. ``string_to_sign = "sha1" \\n sign_time \\n sha1(http_string) \\n``.
4. ``signature = hex(HMAC-SHA1(sign_key, string_to_sign))``.

Only ``host`` and ``content-type`` are ever signed.  Other headers are
dropped from the signed set even when present, and the server verifies
against exactly the list announced in ``q-header-list``.
"""

import time
from collections.abc import Mapping
from urllib.parse import quote

from cdnmirror.digest import hmac_hex, sha1_hex
from cdnmirror.errors import InputValidationError, SigningPreconditionError
from cdnmirror.signing.base import Credential, SignableRequest


SIGN_ALGORITHM = "sha1"

#: Default validity window of a signature, in seconds.
DEFAULT_TTL = 600

#: Header names that participate in signing.
SIGNED_HEADER_NAMES = frozenset({"host", "content-type"})

# encodeURIComponent leaves these unescaped in addition to [A-Za-z0-9].
_URI_COMPONENT_SAFE = "-_.!~*'()"


def url_encode(value: str) -> str:
    """Percent-encode a value the way ``encodeURIComponent`` does.

    Args:
        value: Value to encode.

    Returns:
        Encoded string (uppercase hex escapes, UTF-8 for non-ASCII).
    """
    return quote(value, safe=_URI_COMPONENT_SAFE)


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def normalize_headers(headers: Mapping[str, str | None]) -> dict[str, str]:
    """Select and normalize the headers that get signed.

    Keys are lowercased, values trimmed, None values skipped and anything
    outside ``SIGNED_HEADER_NAMES`` dropped.

    Args:
        headers: Request headers (any case, any order).

    Returns:
        Signed headers, keys in sorted order.
    """
    selected: dict[str, str] = {}
    for name, value in headers.items():
        if value is None:
            continue
        key = name.lower()
        if key in SIGNED_HEADER_NAMES:
            selected[key] = str(value).strip()
    return {key: selected[key] for key in sorted(selected)}


def normalize_params(params: Mapping[str, str | None]) -> dict[str, str]:
    """Lowercase and sort query parameter names.

    Args:
        params: Query parameters.

    Returns:
        Parameters keyed by lowercase name, in sorted order.
    """
    lowered = {
        name.lower(): "" if value is None else str(value)
        for name, value in params.items()
    }
    return {key: lowered[key] for key in sorted(lowered)}


def _format_pairs(pairs: Mapping[str, str]) -> str:
    return "&".join(
        f"{key}={url_encode(value)}" for key, value in pairs.items()
    )


def build_http_string(
    method: str,
    path: str,
    params: Mapping[str, str],
    headers: Mapping[str, str],
) -> str:
    """Build the COS ``HttpString``.

    Args:
        method: HTTP method (lowercased here).
        path: Object path starting with ``/``.
        params: Normalized query parameters (empty for plain PUT/HEAD).
        headers: Normalized signed headers.

    Returns:
        HttpString, including its trailing newline.
    """
    return (
        "\n".join(
            [
                method.lower(),
                path,
                _format_pairs(params),
                _format_pairs(headers),
            ]
        )
        + "\n"
    )


def build_string_to_sign(sign_time: str, http_string: str) -> str:
    """Build the COS ``StringToSign``, including its trailing newline."""
    return (
        "\n".join([SIGN_ALGORITHM, sign_time, sha1_hex(http_string)]) + "\n"
    )


def derive_sign_key(secret_key: str, key_time: str) -> str:
    """Derive the hex ``SignKey`` for a validity window.

    Raises:
        SigningPreconditionError: If *secret_key* is empty.
    """
    if not secret_key:
        raise SigningPreconditionError("Missing COS secret key")
    return hmac_hex(secret_key, key_time, SIGN_ALGORITHM)


def build_authorization(
    secret_id: str,
    sign_time: str,
    header_list: str,
    param_list: str,
    signature: str,
) -> str:
    """Format the ``q-*`` authorization value."""
    return (
        f"q-sign-algorithm={SIGN_ALGORITHM}"
        f"&q-ak={url_encode(secret_id)}"
        f"&q-sign-time={sign_time}"
        f"&q-key-time={sign_time}"
        f"&q-header-list={header_list}"
        f"&q-url-param-list={param_list}"
        f"&q-signature={signature}"
    )


# ---------------------------------------------------------------------------
# Signer
# ---------------------------------------------------------------------------


class CosSigner:
    """Signs COS XML API requests (PUT/HEAD/GET on objects).

    Attributes:
        credential: Secret id/key pair.
        ttl: Signature validity window in seconds.
    """

    def __init__(self, credential: Credential, ttl: int = DEFAULT_TTL) -> None:
        if ttl <= 0:
            raise InputValidationError(
                f"COS signature validity must be positive: {ttl}"
            )
        self.credential = credential
        self.ttl = ttl

    def authorize(
        self, request: SignableRequest, now: int | None = None
    ) -> str:
        """Return the ``Authorization`` header value for *request*.

        Args:
            request: Request to sign.  Only its method, path, ``host`` and
                ``content-type`` headers and query parameters are used.
            now: Start of the validity window (Unix seconds).  Defaults
                to the current time.

        Raises:
            SigningPreconditionError: If the credential is incomplete.
        """
        if not self.credential.is_complete:
            raise SigningPreconditionError("Missing COS credentials")

        start = int(time.time()) if now is None else int(now)
        sign_time = f"{start};{start + self.ttl}"
        sign_key = derive_sign_key(self.credential.secret_key, sign_time)

        headers = normalize_headers(request.headers)
        params = normalize_params(request.query)
        http_string = build_http_string(
            request.method, request.path or "/", params, headers
        )
        string_to_sign = build_string_to_sign(sign_time, http_string)
        signature = hmac_hex(sign_key, string_to_sign, SIGN_ALGORITHM)

        return build_authorization(
            self.credential.secret_id,
            sign_time,
            ";".join(headers),
            ";".join(params),
            signature,
        )
