# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared types for the request signers."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class Credential:
    """Secret id/key pair for one provider.

    The secret key is excluded from ``repr`` so it never ends up in logs or
    tracebacks by accident.

    Attributes:
        secret_id: Public key identifier (``q-ak`` / ``Credential=``).
        secret_key: Private signing key.
    """

    secret_id: str
    secret_key: str = field(repr=False)

    @property
    def is_complete(self) -> bool:
        """True if both halves of the pair are present."""
        return bool(self.secret_id) and bool(self.secret_key)


@dataclass(frozen=True)
class SignableRequest:
    """Description of an outbound request handed to a signer.

    Attributes:
        method: HTTP method (any case).
        host: Target host, without scheme.
        path: Request path starting with ``/``.
        headers: Request headers.  Which of them get signed is up to the
            signer.
        query: Query parameters (name -> value).
        body: Request payload, for signers that hash it.
    """

    method: str
    host: str
    path: str = "/"
    headers: Mapping[str, str | None] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    body: bytes | str = b""


class RequestSigner(Protocol):
    """Builds the authorization value for a described request."""

    def authorize(
        self, request: SignableRequest, now: int | None = None
    ) -> str:
        """Return the authorization value for *request*.

        Args:
            request: Request to sign.
            now: Unix timestamp to sign at; defaults to the current time.
        """
        ...
