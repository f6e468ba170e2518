# simulator.py
"""
Demo data source: synthesizes ESP32 monitoring readings while no real device
is connected.
"""

import asyncio
import logging
import random
from typing import Any, Dict

import config

logger = logging.getLogger(__name__)

# Indicator i is lit when a uniform draw exceeds its threshold
INDICATOR_THRESHOLDS = {1: 0.5, 2: 0.7, 3: 0.3, 4: 0.6}

# Upper bounds of the simulated variables (volts, amps)
VARIABLE_RANGES = {1: 24.0, 2: 5.0}


def generate_monitoring(rng: random.Random = random) -> Dict[str, Dict[int, Any]]:
    """Build a complete, random MonitoringState."""
    return {
        "indicators": {i: rng.random() > INDICATOR_THRESHOLDS[i] for i in config.INDICATOR_IDS},
        "gauges": {i: rng.randrange(config.GAUGE_MAX) for i in config.GAUGE_IDS},
        "variables": {i: round(rng.random() * VARIABLE_RANGES[i], 2) for i in config.VARIABLE_IDS},
    }


async def run_simulator(hub, link, interval: float = config.SIMULATION_INTERVAL_SEC, rng: random.Random = random):
    """Publish simulated readings every `interval` seconds while the device link is down."""
    logger.info(f"Starting simulation mode (every {interval}s)...")
    paused = False
    while True:
        await asyncio.sleep(interval)
        if link.connected:
            if not paused:
                logger.info("ESP32 connected, pausing simulation")
                paused = True
            continue
        if paused:
            logger.info("ESP32 gone, resuming simulation")
            paused = False
        hub.publish_simulated(generate_monitoring(rng))
