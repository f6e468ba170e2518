# broadcast_hub.py
import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

import config
from device_link import DEVICE_LINK, DeviceLink
from models import ControlEvent, ControlKind, MonitoringPatch
from shared_store import STORE, StateStore

logger = logging.getLogger(__name__)

# Real-time event names (same vocabulary as the web UI and the ESP32 sketch)
MONITORING_DATA = "monitoringData"
CONTROL_STATES = "controlStates"
CONTROL_DATA = "controlData"
CONTROL_UPDATE = "controlUpdate"
ESP32_CONNECT = "esp32Connect"
PING = "ping"
PONG = "pong"
ERROR = "error"


class Subscriber(ABC):
    """One real-time client. deliver() must never block."""

    def __init__(self, client_id: str):
        self.client_id = client_id

    @abstractmethod
    def deliver(self, event: str, data: Any):
        ...

    def close(self):
        pass


class WebSocketSubscriber(Subscriber):
    """Queues outbound frames for one WebSocket; a writer task drains the queue."""

    def __init__(self, client_id: str, websocket, queue_size: int = config.CLIENT_QUEUE_SIZE):
        super().__init__(client_id)
        self.websocket = websocket
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closed = False

    def deliver(self, event: str, data: Any):
        if self._closed:
            return
        # call_soon_threadsafe keeps FIFO order no matter which thread broadcasts
        self._loop.call_soon_threadsafe(self._enqueue, {"event": event, "data": data})

    def _enqueue(self, message):
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Client {self.client_id} is not keeping up, dropped {message['event']}")

    async def run(self):
        try:
            while True:
                message = await self._queue.get()
                if message is None:
                    break
                await self.websocket.send_json(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Send to client {self.client_id} failed: {e}")
        finally:
            self._closed = True

    def close(self):
        if self._closed:
            return
        self._closed = True
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._stop_writer)

    def _stop_writer(self):
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass  # writer is cancelled by the endpoint anyway


class BroadcastHub:
    """Fans state changes out to every connected real-time client.

    Mutation and enqueueing happen under one lock, so every client sees
    updates in the order the store applied them.
    """

    def __init__(self, store: StateStore, link: DeviceLink):
        self._store = store
        self._link = link
        self._lock = threading.RLock()
        self._subscribers: Dict[str, Subscriber] = {}

    @property
    def client_count(self) -> int:
        return len(self._subscribers)

    def client_ids(self):
        with self._lock:
            return list(self._subscribers)

    # ----- Delivery -----
    def _send(self, subscriber: Subscriber, event: str, data: Any):
        try:
            subscriber.deliver(event, data)
        except Exception:
            logger.exception(f"Failed to deliver {event} to client {subscriber.client_id}")

    def _send_to(self, client_id: str, event: str, data: Any):
        subscriber = self._subscribers.get(client_id)
        if subscriber is not None:
            self._send(subscriber, event, data)

    def _broadcast(self, event: str, data: Any, exclude: Optional[str] = None):
        for client_id, subscriber in list(self._subscribers.items()):
            if client_id != exclude:
                self._send(subscriber, event, data)

    def reply_error(self, client_id: str, message: str):
        with self._lock:
            self._send_to(client_id, ERROR, {"message": message})

    def broadcast_monitoring(self, data: Dict[str, Dict[int, Any]]):
        with self._lock:
            self._broadcast(MONITORING_DATA, data)

    # ----- Connection lifecycle -----
    def on_connect(self, subscriber: Subscriber):
        with self._lock:
            self._subscribers[subscriber.client_id] = subscriber
            controls, monitoring, _ = self._store.snapshot()
            self._send(subscriber, MONITORING_DATA, monitoring)
            self._send(subscriber, CONTROL_STATES, controls)
            total = len(self._subscribers)
        logger.info(f"Client connected: {subscriber.client_id} ({total} connected)")

    def on_disconnect(self, client_id: str):
        with self._lock:
            subscriber = self._subscribers.pop(client_id, None)
            total = len(self._subscribers)
        if subscriber is None:
            return
        subscriber.close()
        self._link.channel_closed(client_id)
        logger.info(f"Client disconnected: {client_id} ({total} connected)")

    # ----- Inbound events -----
    def handle_message(self, client_id: str, message: Any):
        """Route one decoded frame from a client."""
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            self.reply_error(client_id, "Expected an object with an 'event' field")
            return

        event = message["event"]
        data = message.get("data")
        self._link.mark_activity(client_id)
        try:
            if event == CONTROL_DATA:
                control = ControlEvent.model_validate(data)
                self.on_control_event(client_id, control.type, control.id, control.value, control.timestamp)
            elif event == ESP32_CONNECT:
                self.on_device_handshake(client_id, data)
            elif event == MONITORING_DATA:
                self.on_device_monitoring(client_id, MonitoringPatch.model_validate(data or {}))
            elif event == PING:
                self.on_ping(client_id)
            else:
                logger.warning(f"Unknown event {event!r} from client {client_id}")
                self.reply_error(client_id, f"Unknown event: {event}")
        except ValidationError as e:
            logger.warning(f"Invalid {event} from client {client_id}: {e.error_count()} error(s)")
            self.reply_error(client_id, f"Invalid {event} payload")

    def on_control_event(self, client_id: str, kind, control_id: int, value: Any, timestamp: Optional[float] = None) -> bool:
        with self._lock:
            applied_at = self._store.apply_control_change(kind, control_id, value)
            if applied_at is None:
                label = kind.value if isinstance(kind, ControlKind) else kind
                self._send_to(client_id, ERROR, {"message": f"Rejected control change {label} {control_id}={value!r}"})
                return False
            kind = ControlKind(kind)
            self._broadcast(
                CONTROL_UPDATE,
                {"type": kind.value, "id": control_id, "value": value, "timestamp": applied_at},
                exclude=client_id,
            )
        logger.info(f"Control update - {kind.value} {control_id}: {value}")
        if timestamp is not None:
            logger.debug(f"Client {client_id} stamped control change at {timestamp}, applied at {applied_at}")
        return True

    def on_device_handshake(self, client_id: str, payload: Any = None):
        logger.info(f"ESP32 connected via WebSocket: {payload}")
        with self._lock:
            self._link.mark_handshake(client_id)
            self._send_to(client_id, CONTROL_STATES, self._store.get_controls())

    def on_device_monitoring(self, client_id: str, patch: MonitoringPatch):
        if not self._link.is_device(client_id):
            self.reply_error(client_id, "monitoringData is only accepted after esp32Connect")
            return None
        with self._lock:
            monitoring = self._store.apply_monitoring_patch(**patch.sections())
            self._broadcast(MONITORING_DATA, monitoring)
        return monitoring

    def on_ping(self, client_id: str):
        with self._lock:
            self._send_to(client_id, PONG, {"timestamp": int(time.time() * 1000)})

    # ----- Non-socket sources -----
    def ingest_monitoring(self, patch: MonitoringPatch) -> Tuple[Dict, int]:
        """HTTP push from the device: merge, renew the device lease, fan out the full state."""
        with self._lock:
            monitoring = self._store.apply_monitoring_patch(**patch.sections())
            last_update = self._store.last_update
            self._link.mark_http_push()
            self._broadcast(MONITORING_DATA, monitoring)
        return monitoring, last_update

    def publish_simulated(self, state: Dict[str, Dict[int, Any]]):
        with self._lock:
            monitoring = self._store.replace_monitoring(state)
            self._broadcast(MONITORING_DATA, monitoring)
        return monitoring

    def reset(self):
        with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.close()


# Global hub instance
HUB = BroadcastHub(STORE, DEVICE_LINK)
