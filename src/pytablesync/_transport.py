"""HTTP transport for PostgREST-style remote-store reads."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pytablesync._constants import USER_AGENT
from pytablesync._redact import redact_for_log
from pytablesync.config import SyncConfig
from pytablesync.exceptions import SyncFetchError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`RestTransport`) concrete.
    """

    async def get_rows(self, table: str, params: Mapping[str, str]) -> list[dict[str, Any]]:
        ...


class RestTransport:
    """Reads table rows through ``GET <rest_url>/rest/v1/<table>``."""

    def __init__(self, config: SyncConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self) -> dict[str, str]:
        headers = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if self._config.api_key:
            headers["apikey"] = self._config.api_key
            headers["authorization"] = f"Bearer {self._config.api_key}"
        return headers

    async def get_rows(self, table: str, params: Mapping[str, str]) -> list[dict[str, Any]]:
        """Return the JSON rows of *table* matching the PostgREST *params*."""
        endpoint = f"/rest/v1/{table}"
        url = f"{self._config.rest_url.rstrip('/')}{endpoint}"

        _logger.debug("GET %s params=%s", url, redact_for_log(dict(params)))

        try:
            async with self._http.get(url, params=dict(params), headers=self._headers(), timeout=self._timeout) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise SyncFetchError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except SyncFetchError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise SyncFetchError(
                f"Request to {endpoint} failed: {exc!r}",
                endpoint=endpoint,
            ) from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SyncFetchError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

        if not isinstance(body, list):
            raise SyncFetchError(f"Expected a JSON array from {endpoint}", endpoint=endpoint)
        return [row for row in body if isinstance(row, dict)]
