# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Proxy for the cdnjs library metadata API.

Used by the front end to list a library's versions and files before
asking for a synchronization.  The upstream status and JSON body are
passed through unchanged.
"""

import logging
from typing import Any

import httpx

from cdnmirror.config import DEFAULT_CDNJS_API_URL
from cdnmirror.errors import InputValidationError, UpstreamUnavailableError
from cdnmirror.signing.cos import url_encode


logger = logging.getLogger(__name__)


def library_url(api_url: str, name: str, version: str | None = None) -> str:
    """Build the metadata URL for a library (and optionally one version)."""
    url = f"{api_url.rstrip('/')}/{url_encode(name)}"
    if version:
        url = f"{url}/{url_encode(version)}"
    return url


async def fetch_library(
    name: str | None,
    version: str | None = None,
    *,
    api_url: str = DEFAULT_CDNJS_API_URL,
    client: httpx.AsyncClient | None = None,
) -> tuple[int, Any]:
    """Fetch library metadata from cdnjs.

    Args:
        name: Library name.
        version: Optional version for per-version file listings.
        api_url: Base URL of the cdnjs libraries API.
        client: HTTP client to use.  When None, a client is created and
            closed for this call.

    Returns:
        Tuple of (upstream HTTP status, decoded JSON body).

    Raises:
        InputValidationError: If *name* is missing.
        UpstreamUnavailableError: On transport errors or a non-JSON body.
    """
    if not name:
        raise InputValidationError("Missing library name")

    url = library_url(api_url, name, version)
    try:
        if client is not None:
            response = await client.get(url)
        else:
            async with httpx.AsyncClient(follow_redirects=True) as own_client:
                response = await own_client.get(url)
    except httpx.HTTPError as e:
        logger.warning("Library lookup %s failed: %s", url, e)
        raise UpstreamUnavailableError(
            "Library lookup failed", detail=str(e) or "timeout"
        ) from e

    try:
        return response.status_code, response.json()
    except ValueError as e:
        raise UpstreamUnavailableError(
            f"Library lookup returned a non-JSON body "
            f"(HTTP {response.status_code})",
            detail=response.status_code,
        ) from e
