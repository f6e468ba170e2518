"""
Device liveness tracking.

The device proves it is alive through two channels: HTTP pushes to
/api/monitoring and a persistent WebSocket opened with an esp32Connect
handshake. HTTP traffic feeds a lease that the liveness monitor expires;
an open handshaken socket counts as connected until it closes.
"""

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Optional

import config

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class LinkState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class DeviceLink:
    """Connected/Disconnected state machine for the single device.

    Transitions:
      DISCONNECTED -> CONNECTED   on mark_http_push() or mark_handshake()
      CONNECTED -> DISCONNECTED   on check() once the lease is older than timeout
                                  and no handshaken socket is open,
                                  or on channel_closed() of the handshaken socket
                                  unless an HTTP push is still inside the window
    """

    def __init__(self, timeout_ms: int = int(config.LIVENESS_TIMEOUT_SEC * 1000), clock=_now_ms):
        self._clock = clock
        self._timeout_ms = timeout_ms
        self._lock = threading.Lock()
        self._state = LinkState.DISCONNECTED
        self._last_seen: Optional[int] = None
        self._last_http_push: Optional[int] = None
        self._channel_client: Optional[str] = None

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is LinkState.CONNECTED

    @property
    def channel_client(self) -> Optional[str]:
        return self._channel_client

    @property
    def last_seen(self) -> Optional[int]:
        return self._last_seen

    def _enter_connected(self, source: str):
        self._last_seen = self._clock()
        if self._state is not LinkState.CONNECTED:
            self._state = LinkState.CONNECTED
            logger.info(f"ESP32 connected ({source})")

    def _enter_disconnected(self, reason: str):
        if self._state is not LinkState.DISCONNECTED:
            self._state = LinkState.DISCONNECTED
            logger.info(f"ESP32 disconnected ({reason})")

    def _expired(self, stamp: Optional[int], now: int) -> bool:
        return stamp is None or now - stamp > self._timeout_ms

    def mark_http_push(self):
        with self._lock:
            self._enter_connected("http push")
            self._last_http_push = self._last_seen

    def mark_handshake(self, client_id: str):
        with self._lock:
            if self._channel_client and self._channel_client != client_id:
                logger.warning(f"Device channel moved from {self._channel_client} to {client_id}")
            self._channel_client = client_id
            self._enter_connected(f"websocket {client_id}")

    def mark_activity(self, client_id: str) -> bool:
        """Renew the lease from channel traffic. Only the handshaken client counts."""
        with self._lock:
            if client_id != self._channel_client:
                return False
            self._enter_connected(f"websocket {client_id}")
            return True

    def is_device(self, client_id: str) -> bool:
        return client_id is not None and client_id == self._channel_client

    def channel_closed(self, client_id: str):
        with self._lock:
            if client_id != self._channel_client:
                return
            self._channel_client = None
            # A recent HTTP push keeps the device connected until that lease expires
            if self._expired(self._last_http_push, self._clock()):
                self._enter_disconnected(f"websocket {client_id} closed")
            else:
                self._last_seen = self._last_http_push
                logger.info(f"Device websocket {client_id} closed, HTTP lease still valid")

    def check(self, now: Optional[int] = None) -> bool:
        """Liveness tick. Returns True if this call flipped the link to DISCONNECTED."""
        with self._lock:
            if self._state is not LinkState.CONNECTED:
                return False
            # An open handshaken socket keeps the device connected until it closes
            if self._channel_client is not None:
                return False
            now = self._clock() if now is None else now
            if not self._expired(self._last_seen, now):
                return False
            self._enter_disconnected("connection timeout")
            return True

    def reset(self):
        with self._lock:
            self._state = LinkState.DISCONNECTED
            self._last_seen = None
            self._last_http_push = None
            self._channel_client = None


async def run_liveness_monitor(link: DeviceLink, interval: float = config.LIVENESS_CHECK_INTERVAL_SEC):
    """Periodically expire the device lease."""
    logger.info(f"Liveness monitor started (every {interval}s, timeout {config.LIVENESS_TIMEOUT_SEC}s)")
    while True:
        await asyncio.sleep(interval)
        link.check()


# Global device link instance
DEVICE_LINK = DeviceLink()
