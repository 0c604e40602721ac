# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Error taxonomy shared by the signers, the synchronizer and the proxies.

Every error carries the HTTP status the service layer answers with and an
optional ``detail`` (upstream status, provider error envelope).  Messages
are human-readable and never include credential material.
"""

from typing import Any


class CdnMirrorError(Exception):
    """Base exception for cdnmirror operations.

    Attributes:
        status: HTTP status code that represents this failure.
        detail: Optional structured detail (JSON-serializable).
    """

    status = 500

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON error payload."""
        payload: dict[str, Any] = {"code": self.status, "error": self.message}
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload


class InputValidationError(CdnMirrorError):
    """Missing or malformed input; raised before any network call."""

    status = 400


class SigningPreconditionError(CdnMirrorError):
    """Credential material required for signing is missing."""


class UpstreamUnavailableError(CdnMirrorError):
    """Non-success status or transport error from an upstream service."""


class ProviderError(CdnMirrorError):
    """Upstream answered, but its body carries an error envelope."""
