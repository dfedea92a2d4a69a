"""
HTTP transport used by virtual users.

The executor only depends on the small :class:`Transport` protocol,
``send(method, url, body, headers) -> Response``, so tests can swap in
an in-memory fake.  :class:`RequestsTransport` is the production
implementation on top of ``requests``; each VU gets its own session so
connection pools are never shared between threads.

Network-level failures (connection refused, timeouts) are converted to
:class:`~load_harness.exceptions.TransportError` carrying the time spent
before the failure, which the executor records as a failed check plus a
latency sample.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

import requests

from load_harness.exceptions import TransportError

DEFAULT_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


@dataclass(frozen=True)
class Request:
    """A request as built by a workload step, before the base URL is applied."""

    method: str
    path: str
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Response:
    """
    Transport-neutral response.

    Attributes:
        status: HTTP status code.
        headers: Response headers.
        body: Raw response body text.
        duration_ms: Time from sending the request to receiving the full
            response, in milliseconds.
    """

    status: int
    headers: Mapping[str, str]
    body: str
    duration_ms: float

    def json(self) -> Any:
        """Parse the body as JSON, returning ``None`` when it is not JSON."""
        try:
            return json.loads(self.body) if self.body else None
        except ValueError:
            return None

    def json_field(self, path: str) -> Any:
        """
        Return a value from the JSON body by dotted path (``"user.id"``).

        Returns ``None`` when the body is not a JSON object or any
        segment of the path is missing.
        """
        current = self.json()
        for segment in path.split("."):
            if not isinstance(current, dict):
                return None
            current = current.get(segment)
        return current


class Transport(Protocol):
    def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response: ...

    def close(self) -> None: ...


def auth_header(token: str) -> dict[str, str]:
    """
    Build standard bearer auth headers for API requests.

    Args:
        token: A session token returned by the login step.

    Returns:
        ``Authorization`` plus the JSON ``Content-Type``/``Accept`` pair.
    """
    return {"Authorization": f"Bearer {token}", **DEFAULT_HEADERS}


class RequestsTransport:
    """
    ``requests``-backed transport with one session per instance.

    Args:
        timeout: Per-request timeout in seconds.  Enforced here rather
            than by the scheduler, which never cancels in-flight work.
    """

    def __init__(self, timeout: float = 10.0, session: requests.Session | None = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        merged_headers = {**DEFAULT_HEADERS, **(headers or {})}
        data = json.dumps(body) if body is not None and not isinstance(body, (str, bytes)) else body

        started = time.perf_counter()
        try:
            raw = self.session.request(
                method=method,
                url=url,
                data=data,
                headers=merged_headers,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            raise TransportError(f"{method} {url} timed out", elapsed_ms=elapsed_ms) from exc
        except requests.RequestException as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            raise TransportError(
                f"{method} {url} failed: {exc.__class__.__name__}", elapsed_ms=elapsed_ms
            ) from exc

        # The body has already been read (stream=False), so this covers the full exchange.
        duration_ms = (time.perf_counter() - started) * 1000.0
        return Response(
            status=raw.status_code,
            headers=dict(raw.headers),
            body=raw.text,
            duration_ms=duration_ms,
        )

    def close(self) -> None:
        self.session.close()
