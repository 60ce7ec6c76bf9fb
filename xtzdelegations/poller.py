"""Background synchronisation of delegations from the TzKT API."""

from __future__ import annotations

import logging
import re
import threading
import time
from datetime import datetime, timezone
from typing import Any

import httpx

from .errors import AppError, ExternalAPIError
from .model import Delegation, DelegationRepositoryPort

logger = logging.getLogger(__name__)

TZKT_BASE_URL = "https://api.tzkt.io/v1/operations/delegations"
PAGE_SIZE = 1000
MAX_RETRIES = 5
INITIAL_BACKOFF = 1.0
MAX_ERROR_BODY_LEN = 4096
MAX_TOTAL_WAIT = 120.0
POLL_INTERVAL = 60.0
ERROR_DELAY = 1.0
REQUEST_TIMEOUT = 30.0

_INTEGER = re.compile(r"[+-]?\d+")
_HTTP_DATE_FORMATS = (
    "%a, %d %b %Y %H:%M:%S GMT",
    "%A, %d-%b-%y %H:%M:%S GMT",
    "%a %b %d %H:%M:%S %Y",
)


class PollerCancelled(Exception):
    """Raised when the poller was asked to stop while work was pending."""

    def __init__(self, message: str = "context cancelled") -> None:
        super().__init__(message)


def parse_retry_after(header: str) -> float:
    """Return the number of seconds a Retry-After header asks to wait.

    Accepts integer seconds or an HTTP date; the result may be zero or
    negative. Raises ValueError when the header is empty or malformed.
    """
    if not header:
        raise ValueError("empty Retry-After")
    if _INTEGER.fullmatch(header):
        return float(int(header))
    for fmt in _HTTP_DATE_FORMATS:
        try:
            moment = datetime.strptime(header, fmt)
        except ValueError:
            continue
        moment = moment.replace(tzinfo=timezone.utc)
        return (moment - datetime.now(timezone.utc)).total_seconds()
    raise ValueError(f"invalid Retry-After: {header}")


def _default_client() -> httpx.Client:
    return httpx.Client(
        timeout=REQUEST_TIMEOUT,
        limits=httpx.Limits(
            max_connections=100,
            max_keepalive_connections=10,
            keepalive_expiry=90.0,
        ),
    )


class PollerService:
    """Keeps the local store in step with delegations published by TzKT."""

    def __init__(
        self,
        repo: DelegationRepositoryPort,
        client: httpx.Client | None = None,
    ) -> None:
        self.repo = repo
        self.client = client if client is not None else _default_client()
        self.initial_backoff = INITIAL_BACKOFF
        self.max_retries = MAX_RETRIES
        self.max_total_wait = MAX_TOTAL_WAIT
        self.poll_interval = POLL_INTERVAL
        self.error_delay = ERROR_DELAY
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def stopped(self) -> bool:
        """True once stop() has been called."""
        return self._stop.is_set()

    def start(self) -> None:
        """Run the sync-then-poll loop in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("poller is already running")
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._sync_and_poll, name="delegation-poller", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Ask the poller to finish; pending waits end at once."""
        self._stop.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the poller thread ends; return False on timeout."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _catch_up(self, phase: str) -> bool:
        """Sync batches until caught up; return False when asked to stop."""
        while True:
            try:
                caught_up = self.sync_batch()
            except PollerCancelled:
                logger.info("poller cancelled during %s, exiting", phase)
                return False
            except Exception:
                if self.stopped:
                    logger.exception("poller cancelled during %s, exiting", phase)
                    return False
                logger.exception("error during %s", phase)
                if self._stop.wait(self.error_delay):
                    return False
                continue
            if caught_up:
                return True

    def _sync_and_poll(self) -> None:
        logger.info("syncing historical data")
        if not self._catch_up("historical_sync"):
            return
        logger.info("caught up. Polling for new data...")
        while not self._stop.wait(self.poll_interval):
            if not self._catch_up("polling"):
                return

    def sync_batch(self) -> bool:
        """Fetch and store the next batch; return True when no more is pending."""
        if self.stopped:
            raise PollerCancelled("context cancelled")

        try:
            last_id = self.repo.get_latest_tzkt_id()
        except Exception as err:
            raise AppError(
                f"failed to get latest TzktID from database: {err}", err
            ) from err

        try:
            delegations = self.fetch_batch(last_id)
        except PollerCancelled:
            raise
        except Exception as err:
            raise ExternalAPIError(
                "tzkt",
                "GET",
                f"failed to fetch delegations from Tzkt API: {err}",
                err,
            ) from err

        logger.info(
            "Fetched delegation batch (count=%d, last_tzkt_id=%d)",
            len(delegations), last_id,
        )
        if not delegations:
            return True

        try:
            self.repo.insert_delegations(delegations)
        except Exception as err:
            raise AppError(
                f"failed to store delegations to database: {err}", err
            ) from err

        return len(delegations) < PAGE_SIZE

    def _pause(self, seconds: float) -> None:
        if self._stop.wait(max(seconds, 0.0)):
            raise PollerCancelled("context cancelled")

    def fetch_batch(self, last_id: int) -> list[Delegation]:
        """Fetch up to one page of delegations with ids above ``last_id``.

        Rate limits and server errors are retried with backoff; other
        failures raise ExternalAPIError.
        """
        url = f"{TZKT_BASE_URL}?limit={PAGE_SIZE}&id.gt={last_id}"
        backoff = self.initial_backoff
        started = time.monotonic()
        response: httpx.Response | None = None
        last_status: int | None = None

        attempt = 0
        while (
            attempt < self.max_retries
            and time.monotonic() - started < self.max_total_wait
        ):
            response = self.client.get(url)
            status = response.status_code
            last_status = status

            if status == 200:
                break

            if status in (429, 503):
                header = response.headers.get("Retry-After", "")
                response.close()
                try:
                    delay = parse_retry_after(header)
                except ValueError:
                    delay = 0.0
                if delay > 0:
                    wait = delay
                    logger.info(
                        "HTTP status %d, retrying in %.3fs (Retry-After=%s)",
                        status, wait, header,
                    )
                else:
                    wait = backoff
                    logger.info(
                        "HTTP status %d, invalid/missing Retry-After, backoff %.3fs "
                        "(attempt %d/%d)",
                        status, wait, attempt + 1, self.max_retries,
                    )
                    backoff *= 2
                self._pause(wait)
                attempt += 1
                continue

            if 500 <= status < 600:
                response.close()
                logger.info(
                    "HTTP server error %d, retrying in %.3fs (attempt %d/%d)",
                    status, backoff, attempt + 1, self.max_retries,
                )
                self._pause(backoff)
                backoff *= 2
                attempt += 1
                continue

            body = response.content[:MAX_ERROR_BODY_LEN].decode(
                "utf-8", errors="replace"
            )
            response.close()
            logger.error("HTTP unexpected status %d, not retrying: %s", status, body)
            raise ExternalAPIError(
                "tzkt",
                "GET",
                f"unexpected status code: {status}, body: {body}",
            )

        if response is None:
            raise ExternalAPIError("tzkt", "GET", "nil response")
        if last_status != 200:
            raise ExternalAPIError(
                "tzkt",
                "GET",
                f"retries exhausted, last status code: {last_status}",
            )

        try:
            payload: Any = response.json()
            if payload is None:
                return []
            if not isinstance(payload, list):
                raise ValueError(f"expected a JSON array, got {type(payload).__name__}")
            return [Delegation.from_tzkt(item) for item in payload]
        except ValueError as err:
            raise ExternalAPIError(
                "tzkt", "GET", f"error decoding response body: {err}", err
            ) from err
        finally:
            response.close()