"""
provider.py - JSON-RPC client for the chain event provider.

Read-only. Two calls: eth_blockNumber and eth_getLogs.

RETRY POLICY:
- Timeouts, network errors, HTTP 429/5xx and JSON-RPC errors are transient
  and retried with exponential backoff up to max_retries attempts
- "Too many results" answers raise RangeTooLarge immediately (caller splits)
- Other HTTP 4xx fail immediately as ProviderUnavailable
- Exhausted retries raise ProviderUnavailable
"""

import itertools
import logging
import time
from typing import Any, Callable

import httpx

from ticket_ledger.errors import ProviderUnavailable, RangeTooLarge, TransientProviderError

logger = logging.getLogger(__name__)

# JSON-RPC "limit exceeded" as used by Infura/Alchemy for oversized log queries
LIMIT_EXCEEDED_CODE = -32005

_RANGE_TOO_LARGE_MARKERS = (
    "query returned more than",
    "block range",
    "response size exceeded",
    "too many results",
    "log response size",
)


def _is_range_error(error: dict[str, Any]) -> bool:
    message = str(error.get("message", "")).lower()
    if error.get("code") == LIMIT_EXCEEDED_CODE and "rate" not in message:
        return True
    return any(marker in message for marker in _RANGE_TOO_LARGE_MARKERS)


class ChainProvider:
    """
    Ethereum JSON-RPC access over HTTP.

    Thread-safe: httpx.Client may be shared by the reader's worker threads.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        max_retries: int = 5,
        backoff_min: float = 0.5,
        backoff_max: float = 10.0,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = url
        self.max_retries = max_retries
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self._sleep = sleep
        self._ids = itertools.count(1)
        self.http_client = http_client or httpx.Client(
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self.http_client.close()

    # --- Public calls ---

    def block_number(self) -> int:
        """Current chain head."""
        return int(self._call("eth_blockNumber", []), 16)

    def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: str | None = None,
        topics: list[Any] | None = None,
        check_deadline: Callable[[], None] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Fetch raw logs in [from_block, to_block].

        check_deadline is called before each backoff sleep.

        Raises:
            RangeTooLarge: Provider refused the range size.
            ProviderUnavailable: Retries exhausted.
        """
        flt: dict[str, Any] = {"fromBlock": hex(from_block), "toBlock": hex(to_block)}
        if address:
            flt["address"] = address
        if topics:
            flt["topics"] = topics
        try:
            result = self._call("eth_getLogs", [flt], check_deadline)
        except RangeTooLarge as e:
            raise RangeTooLarge(from_block, to_block, str(e)) from e
        if not isinstance(result, list):
            raise ProviderUnavailable(
                f"eth_getLogs returned {type(result).__name__}, expected list",
                method="eth_getLogs",
            )
        return result

    # --- Transport ---

    def _call(
        self,
        method: str,
        params: list[Any],
        check_deadline: Callable[[], None] | None = None,
    ) -> Any:
        attempt = 0
        last_error = None

        while attempt < self.max_retries:
            try:
                return self._call_once(method, params)
            except TransientProviderError as e:
                last_error = str(e)

            attempt += 1
            if attempt < self.max_retries:
                wait_time = min(self.backoff_min * (2 ** (attempt - 1)), self.backoff_max)
                logger.warning(
                    "Provider %s retry %d/%d after %.1fs: %s",
                    method,
                    attempt,
                    self.max_retries,
                    wait_time,
                    last_error,
                )
                if check_deadline is not None:
                    check_deadline()
                self._sleep(wait_time)

        raise ProviderUnavailable(
            f"{method} failed after {attempt} attempts. Last error: {last_error}",
            method=method,
            attempts=attempt,
            last_error=last_error,
        )

    def _call_once(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.http_client.post(self.url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"TIMEOUT: {e}") from e
        except httpx.NetworkError as e:
            raise TransientProviderError(f"NETWORK_FAILURE: {e}") from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"TRANSPORT_ERROR: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 or status >= 500:
                raise TransientProviderError(f"HTTP {status}") from e
            raise ProviderUnavailable(
                f"Provider rejected {method}: HTTP {status}",
                method=method,
                attempts=1,
                last_error=f"HTTP {status}",
            ) from e
        except ValueError as e:
            # Malformed JSON body, typically a proxy error page
            raise TransientProviderError(f"INVALID_JSON: {e}") from e

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            if _is_range_error(error):
                raise RangeTooLarge(-1, -1, str(error.get("message")))
            raise TransientProviderError(
                f"RPC_ERROR {error.get('code')}: {error.get('message')}"
            )
        if not isinstance(body, dict) or "result" not in body:
            raise TransientProviderError("RPC response missing result")
        return body["result"]
