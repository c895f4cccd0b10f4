"""
SOAP Transport with Call Pacing
===============================

Two layers:
- SoapHttpSender posts a payload to the SDK endpoint with requests
- PacedTransport gates call start times, attaches the session cookie and
  keeps latency statistics

Does NOT provide (intentionally):
- Retries or backoff (callers own retry policy)
- Circuit breakers
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import requests
from requests.structures import CaseInsensitiveDict

from vim_telemetry.config import CONTENT_TYPE, SOAP_ACTION, USER_AGENT
from vim_telemetry.errors import TransportError
from vim_telemetry.models import ApiStats

logger = logging.getLogger(__name__)


@dataclass
class CallResponse:
    """Raw outcome of one SOAP call"""
    raw: bytes
    headers: CaseInsensitiveDict
    latency: float
    status_code: int = 200


class SoapHttpSender:
    """
    Posts SOAP envelopes over HTTPS with a shared requests.Session.

    HTTP error statuses are returned, not raised: vSphere reports faults with
    500 responses whose body still has to be decoded.
    """

    def __init__(self, url: str, verify_ssl: bool = False,
                 timeout: Tuple[float, float] = (5, 30),
                 session: Optional[requests.Session] = None):
        """
        Args:
            url: SDK endpoint, e.g. https://vcenter.example.com/sdk
            verify_ssl: Whether to verify certificates (False for self-signed)
            timeout: Tuple of (connect_timeout, read_timeout)
            session: Optional pre-built requests.Session
        """
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.verify = verify_ssl

        if not verify_ssl:
            import urllib3
            urllib3.disable_warnings(category=urllib3.exceptions.InsecureRequestWarning)

    def send(self, payload: bytes, headers: Dict[str, str]) -> Tuple[bytes, CaseInsensitiveDict, int]:
        try:
            # verify must be passed per call, REQUESTS_CA_BUNDLE would win otherwise
            response = self.session.post(
                self.url,
                data=payload,
                headers=headers,
                timeout=self.timeout,
                verify=self.session.verify,
            )
        except requests.Timeout as e:
            raise TransportError(f"Request to {self.url} timed out: {e}")
        except requests.exceptions.SSLError as e:
            raise TransportError(f"TLS failure talking to {self.url}: {e}")
        except requests.RequestException as e:
            raise TransportError(f"Request to {self.url} failed: {e}")

        return response.content, CaseInsensitiveDict(response.headers), response.status_code

    def close(self):
        self.session.close()


class PacedTransport:
    """
    Enforces a minimum interval between the start times of successive calls.

    The gate is shared by every caller of this instance, so concurrent
    workers are paced globally. Statistics are updated under a lock.
    """

    def __init__(self, sender, min_interval_ms: int = 0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            sender: Object with send(payload, headers) -> (body, headers, status)
            min_interval_ms: Minimum spacing between call start times
            clock: Monotonic clock in seconds
            sleep: Sleep function in seconds
        """
        self.sender = sender
        self.min_interval_ms = min_interval_ms
        self._clock = clock
        self._sleep = sleep
        self._gate_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._last_start: Optional[float] = None
        self._cookie: Optional[str] = None
        self._stats = ApiStats()

    def set_cookie(self, cookie: Optional[str]):
        with self._stats_lock:
            self._cookie = cookie

    @property
    def cookie(self) -> Optional[str]:
        return self._cookie

    def _request_headers(self) -> Dict[str, str]:
        headers = {
            "SOAPAction": SOAP_ACTION,
            "User-Agent": USER_AGENT,
            "Content-Type": CONTENT_TYPE,
        }
        with self._stats_lock:
            if self._cookie:
                headers["Cookie"] = self._cookie
        return headers

    def _wait_for_slot(self):
        """Reserve the next start slot under the lock, sleep outside it."""
        interval = self.min_interval_ms / 1000.0
        if interval <= 0:
            return

        with self._gate_lock:
            now = self._clock()
            if self._last_start is None:
                start = now
            else:
                start = max(now, self._last_start + interval)
            self._last_start = start

        delay = start - now
        if delay > 0:
            logger.debug(f"Throttle: delaying {int(delay * 1000)}ms before API call")
            self._sleep(delay)

    def _record(self, latency: float):
        with self._stats_lock:
            stats = self._stats
            stats.total_calls += 1
            stats.last_latency = latency
            stats.total_time += latency
            stats.average_latency = ((stats.average_latency * (stats.total_calls - 1)) + latency) / stats.total_calls

    def call(self, payload: bytes) -> CallResponse:
        """
        Send one payload.

        Raises:
            TransportError: On network, TLS or timeout failures
        """
        self._wait_for_slot()
        headers = self._request_headers()

        started = self._clock()
        body, response_headers, status_code = self.sender.send(payload, headers)
        latency = self._clock() - started

        self._record(latency)
        logger.debug(f"API call completed in {latency * 1000:.1f}ms (HTTP {status_code})")

        return CallResponse(
            raw=body,
            headers=CaseInsensitiveDict(response_headers or {}),
            latency=latency,
            status_code=status_code,
        )

    def stats(self) -> ApiStats:
        with self._stats_lock:
            return ApiStats(
                total_calls=self._stats.total_calls,
                total_time=self._stats.total_time,
                average_latency=self._stats.average_latency,
                last_latency=self._stats.last_latency,
            )
