"""clawguard.core.client

Shared synchronous HTTP client with:
- bounded retries (exponential backoff) for transport failures
- per-call retry and timeout overrides (release paths use none and short)

Status codes are not interpreted here. Vault and the OAuth proxy each map
their own responses onto the error taxonomy.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from clawguard.core.exceptions import ConfigError, Unreachable

logger = logging.getLogger(__name__)

# Gateway errors from a proxy in front of the upstream. 503 is deliberately
# absent: vault answers 503 when sealed and that must not be retried.
RETRYABLE_STATUS = frozenset({502, 504})


@dataclass(frozen=True, slots=True)
class ClientConfig:
    base_url: str
    timeout_s: float = 10.0
    max_retries: int = 3
    backoff_base_s: float = 1.0
    backoff_cap_s: float = 8.0


class HttpClient:
    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=config.base_url.rstrip("/"),
            timeout=config.timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def backoff_s(self, attempt: int) -> float:
        return min(self.config.backoff_base_s * (2**attempt), self.config.backoff_cap_s)

    def request(
        self,
        method: str,
        path: str,
        *,
        retries: int | None = None,
        timeout_s: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying transport failures.

        Raises:
            Unreachable: the upstream could not be reached within the retry budget.
            ConfigError: the base URL has no http or https scheme.
        """

        max_retries = self.config.max_retries if retries is None else retries
        if timeout_s is not None:
            kwargs["timeout"] = timeout_s

        last_exc: Exception | None = None
        for attempt in range(max_retries + 1):
            try:
                resp = self._client.request(method, path, **kwargs)
            except httpx.UnsupportedProtocol as e:
                raise ConfigError(f"{method} {path}: {e} (base_url={self.config.base_url!r})") from e
            except httpx.TransportError as e:
                last_exc = e
            else:
                if resp.status_code not in RETRYABLE_STATUS:
                    return resp
                last_exc = httpx.HTTPStatusError(
                    f"upstream gateway error {resp.status_code}", request=resp.request, response=resp
                )

            if attempt >= max_retries:
                break
            delay = self.backoff_s(attempt)
            logger.warning(
                "http_retry",
                extra={"method": method, "path": path, "attempt": attempt + 1, "delay_s": delay},
            )
            self._sleep(delay)

        assert last_exc is not None
        status = None
        if isinstance(last_exc, httpx.HTTPStatusError):
            status = last_exc.response.status_code
        raise Unreachable(f"{method} {path}: {type(last_exc).__name__}: {last_exc}", status=status) from last_exc


def json_body(resp: httpx.Response) -> dict[str, Any]:
    """Parse a JSON object body, or return an empty dict."""

    if not resp.content:
        return {}
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
