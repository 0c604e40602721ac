# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Traffic analytics for the mirror's public domain.

Queries EdgeOne ``DescribeTopL7AnalysisData`` for the top URLs of the last
30 days, signed with TC3-HMAC-SHA256, and trims the response for display:
the ``TypeKey`` bookkeeping field is dropped from every row and the
breakdown entry for ``/`` is removed.

A provider error envelope (``Response.Error``) is a failure even when the
HTTP status is 200.
"""

import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from cdnmirror.config import CloudConfig, MetricsConfig
from cdnmirror.errors import (
    InputValidationError,
    ProviderError,
    UpstreamUnavailableError,
)
from cdnmirror.signing import SignableRequest, Tc3Signer


logger = logging.getLogger(__name__)

#: Selector -> provider metric name.  The first entry is the default.
METRIC_NAMES: dict[str, str] = {
    "request": "l7Flow_request_url",
    "flow": "l7Flow_outFlux_url",
}

QUERY_WINDOW = timedelta(days=30)
RESULT_LIMIT = 101

#: Breakdown key removed from every row.
_ROOT_PATH = "/"
#: Row field removed from every row.
_BOOKKEEPING_FIELD = "TypeKey"

_CONTENT_TYPE = "application/json; charset=utf-8"


def resolve_metric(kind: str | None) -> str:
    """Map a selector to a provider metric name.

    Unknown or missing selectors map to the first (default) metric.
    """
    if kind and kind in METRIC_NAMES:
        return METRIC_NAMES[kind]
    return next(iter(METRIC_NAMES.values()))


def format_timestamp(moment: datetime) -> str:
    """Format a moment as whole-second UTC ISO 8601 (``...T12:00:00Z``)."""
    if moment.tzinfo is None:
        raise InputValidationError("Query timestamps must be timezone-aware")
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_payload(metric_name: str, domain: str, now: datetime) -> dict:
    """Build the analytics request body.

    Args:
        metric_name: Provider metric name.
        domain: Domain whose traffic is queried.
        now: End of the query window.

    Returns:
        JSON-serializable payload.
    """
    return {
        "StartTime": format_timestamp(now - QUERY_WINDOW),
        "EndTime": format_timestamp(now),
        "MetricName": metric_name,
        "Limit": RESULT_LIMIT,
        "Filters": [
            {"Key": "domain", "Operator": "equals", "Value": [domain]},
            {"Key": "statusCode", "Operator": "equals", "Value": ["200"]},
            {"Key": "url", "Operator": "notInclude", "Value": ["/pages"]},
        ],
    }


def clean_response(envelope: dict[str, Any]) -> dict[str, Any]:
    """Trim an analytics ``Response`` envelope for display.

    Missing or oddly-typed fields are passed through untouched.

    Args:
        envelope: The ``Response`` object from the API.

    Returns:
        A copy with ``TypeKey`` removed from each ``Data`` row and
        ``DetailData`` entries keyed ``/`` filtered out.
    """
    cleaned = dict(envelope)
    rows = cleaned.get("Data")
    if isinstance(rows, list):
        cleaned["Data"] = [_clean_row(row) for row in rows]
    return cleaned


def _clean_row(row: Any) -> Any:
    if not isinstance(row, dict):
        return row
    cleaned = {k: v for k, v in row.items() if k != _BOOKKEEPING_FIELD}
    details = cleaned.get("DetailData")
    if isinstance(details, list):
        cleaned["DetailData"] = [
            entry
            for entry in details
            if not (isinstance(entry, dict) and entry.get("Key") == _ROOT_PATH)
        ]
    return cleaned


@dataclass(frozen=True)
class PreparedQuery:
    """A signed analytics request, ready to send.

    Attributes:
        url: Endpoint URL.
        headers: Request headers including ``Authorization``.
        body: Serialized payload (the exact bytes that were hashed).
        metric_name: Provider metric name being queried.
    """

    url: str
    headers: dict[str, str]
    body: bytes
    metric_name: str


class MetricsQuery:
    """Builds, signs and sends analytics queries."""

    def __init__(
        self,
        cloud: CloudConfig,
        metrics: MetricsConfig,
        domain: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the query builder.

        Args:
            cloud: API credentials.
            metrics: API endpoint settings.
            domain: Domain filter for the query.
            client: HTTP client to use.  When None, one is created and
                closed per query.
        """
        if not domain:
            raise InputValidationError("Metrics query requires a domain")
        self.metrics = metrics
        self.domain = domain
        self._client = client
        self._signer = Tc3Signer(cloud.credential, metrics.service)

    def prepare(
        self, kind: str | None, now: float | None = None
    ) -> PreparedQuery:
        """Build and sign a query.

        Args:
            kind: Metric selector (``request`` or ``flow``).
            now: Unix time of the query; defaults to the current time.

        Returns:
            The signed request.

        Raises:
            SigningPreconditionError: If the credentials are incomplete.
        """
        timestamp = int(time.time() if now is None else now)
        moment = datetime.fromtimestamp(timestamp, tz=UTC)
        metric_name = resolve_metric(kind)
        body = json.dumps(
            build_payload(metric_name, self.domain, moment),
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")

        host = self.metrics.host
        authorization = self._signer.authorize(
            SignableRequest(
                method="POST",
                host=host,
                path="/",
                headers={"content-type": _CONTENT_TYPE, "host": host},
                body=body,
            ),
            now=timestamp,
        )
        return PreparedQuery(
            url=f"https://{host}/",
            headers={
                "Authorization": authorization,
                "Content-Type": _CONTENT_TYPE,
                "Host": host,
                "X-TC-Action": self.metrics.action,
                "X-TC-Timestamp": str(timestamp),
                "X-TC-Version": self.metrics.version,
            },
            body=body,
            metric_name=metric_name,
        )

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(follow_redirects=True) as client:
            yield client

    async def query(
        self, kind: str | None, now: float | None = None
    ) -> dict[str, Any]:
        """Run an analytics query.

        Args:
            kind: Metric selector.
            now: Unix time of the query; defaults to the current time.

        Returns:
            The cleaned ``Response`` envelope.

        Raises:
            UpstreamUnavailableError: On transport errors, error statuses
                or an undecodable body.
            ProviderError: If the body carries an error envelope.
        """
        prepared = self.prepare(kind, now)
        async with self._session() as client:
            try:
                response = await client.post(
                    prepared.url,
                    headers=prepared.headers,
                    content=prepared.body,
                )
            except httpx.HTTPError as e:
                logger.warning("Metrics API request failed: %s", e)
                raise UpstreamUnavailableError(
                    "Metrics API request failed", detail=str(e) or "timeout"
                ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(
                f"Metrics API returned a non-JSON body "
                f"(HTTP {response.status_code})",
                detail=response.status_code,
            ) from e

        envelope = data.get("Response") if isinstance(data, dict) else None
        error = envelope.get("Error") if isinstance(envelope, dict) else None

        if not response.is_success:
            logger.warning(
                "Metrics API returned HTTP %d", response.status_code
            )
            raise UpstreamUnavailableError(
                f"Metrics API returned HTTP {response.status_code}",
                detail=error or data,
            )
        if error:
            logger.warning("Metrics API reported an error: %s", error)
            raise ProviderError("Metrics API call failed", detail=error)
        if not isinstance(envelope, dict):
            raise ProviderError(
                "Metrics API response has no Response envelope", detail=data
            )

        rows = envelope.get("Data")
        logger.info(
            "Metrics query %s returned %d rows",
            prepared.metric_name,
            len(rows) if isinstance(rows, list) else 0,
        )
        return clean_response(envelope)
