"""
ESP32 device emulator for exercising the relay without hardware.

Mirrors the control states it receives and reports readings derived from
them, either over the real-time channel (esp32Connect handshake) or by
polling the REST API the way the HTTP sketch does.
"""

import argparse
import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional

import httpx
import websockets

import config
from models import ControlKind

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _normalize(section: Dict[Any, Any]) -> Dict[int, Any]:
    # JSON object keys arrive as strings
    return {int(key): value for key, value in section.items()}


class DeviceEmulator:
    """Loopback device: indicators follow buttons/toggles, gauges and variables follow sliders."""

    def __init__(self, base_url: str = f"http://localhost:{config.PORT}", device_id: str = "ESP32-S2-EMU"):
        self.base_url = base_url.rstrip("/")
        self.device_id = device_id
        self.controls = {
            "pushButtons": {i: False for i in config.PUSH_BUTTON_IDS},
            "toggles": {i: False for i in config.TOGGLE_IDS},
            "sliders": {i: config.DEFAULT_SLIDER_VALUE for i in config.SLIDER_IDS},
        }
        self.websocket = None

    @property
    def ws_url(self) -> str:
        scheme, _, rest = self.base_url.partition("://")
        return f"{'wss' if scheme == 'https' else 'ws'}://{rest}/ws"

    # ----- Control mirror -----
    def apply_control_states(self, states: Dict[str, Dict[Any, Any]]):
        for section in self.controls:
            if section in states:
                self.controls[section].update(_normalize(states[section]))

    def apply_control_update(self, update: Dict[str, Any]):
        try:
            section = ControlKind(update["type"]).section
            self.controls[section][int(update["id"])] = update["value"]
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Ignoring malformed controlUpdate: {update}")
            return
        logger.info(f"Control {update['type']} {update['id']} -> {update['value']}")

    def build_readings(self) -> Dict[str, Dict[int, Any]]:
        buttons = self.controls["pushButtons"]
        toggles = self.controls["toggles"]
        sliders = self.controls["sliders"]
        return {
            "indicators": {1: buttons[1], 2: buttons[2], 3: toggles[1], 4: toggles[2]},
            "gauges": {1: sliders[1], 2: sliders[2]},
            "variables": {1: round(sliders[3] * 0.24, 2), 2: round(sliders[4] * 0.05, 2)},
        }

    def handle_message(self, message: Dict[str, Any]):
        """Handle one frame from the relay."""
        event = message.get("event")
        data = message.get("data")
        if event == "controlStates":
            self.apply_control_states(data or {})
            logger.info(f"Received control states: {self.controls}")
        elif event == "controlUpdate":
            self.apply_control_update(data or {})
        elif event == "error":
            logger.warning(f"Relay rejected a message: {data}")
        # monitoringData echoes what this device produced; pong needs no action

    # ----- WebSocket mode -----
    async def connect_websocket(self, interval: float = 2.0, max_retries: int = 10, retry_delay: float = 5):
        """Connect to the relay with retry logic"""
        for attempt in range(max_retries):
            try:
                logger.info(f"[{self.device_id}] Connecting to {self.ws_url} (attempt {attempt + 1}/{max_retries})")
                async with websockets.connect(self.ws_url) as self.websocket:
                    logger.info(f"[{self.device_id}] Connected to relay!")
                    await self.run_websocket_session(interval)
                    return
            except (OSError, websockets.exceptions.WebSocketException) as e:
                logger.warning(f"[{self.device_id}] Connection error: {e}. Retrying in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)

        logger.error(f"[{self.device_id}] Failed to connect to relay after all retries")

    async def send_event(self, event: str, data: Any = None):
        await self.websocket.send(json.dumps({"event": event, "data": data}))

    async def run_websocket_session(self, interval: float):
        await self.send_event("esp32Connect", {"deviceId": self.device_id, "transport": "websocket"})
        push_task = asyncio.create_task(self.push_loop(interval))
        try:
            async for raw in self.websocket:
                try:
                    self.handle_message(json.loads(raw))
                except json.JSONDecodeError:
                    logger.warning(f"Malformed frame from relay: {raw!r}")
        except websockets.exceptions.ConnectionClosed:
            logger.warning("Connection closed by relay")
        finally:
            push_task.cancel()

    async def push_loop(self, interval: float):
        """Report readings every `interval` seconds; each push renews the liveness lease"""
        while True:
            await self.send_event("monitoringData", self.build_readings())
            await asyncio.sleep(interval)

    # ----- HTTP mode -----
    async def run_http(self, interval: float = 2.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Poll controls and push readings through the REST API."""
        async with httpx.AsyncClient(base_url=self.base_url, timeout=10.0, transport=transport) as client:
            while True:
                try:
                    response = await client.get("/api/controls")
                    response.raise_for_status()
                    self.apply_control_states(response.json()["data"])

                    response = await client.post("/api/monitoring", json=self.build_readings())
                    response.raise_for_status()
                    logger.info(f"[{self.device_id}] Pushed readings at {response.json()['timestamp']}")
                except httpx.HTTPError as e:
                    logger.error(f"[{self.device_id}] HTTP error: {e}")
                await asyncio.sleep(interval)


async def main():
    parser = argparse.ArgumentParser(description="ESP32 device emulator")
    parser.add_argument("--url", default=os.getenv("RELAY_URL", f"http://localhost:{config.PORT}"))
    parser.add_argument("--mode", choices=("ws", "http"), default="ws")
    parser.add_argument("--interval", type=float, default=2.0)
    parser.add_argument("--device-id", default="ESP32-S2-EMU")
    args = parser.parse_args()

    logger.info(f"Starting ESP32 emulator in {args.mode} mode...")
    device = DeviceEmulator(args.url, args.device_id)
    if args.mode == "ws":
        await device.connect_websocket(args.interval)
    else:
        await device.run_http(args.interval)


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
