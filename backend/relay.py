# Serves the web UI, the ESP32 REST API and the real-time channel on http://0.0.0.0:<PORT>.

import logging

import uvicorn

import config
from rest_api import app

logger = logging.getLogger(__name__)


def main():
    logging.basicConfig(
        level=config.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(f"🚀 ESP32 S2 SCADA Server running on port {config.PORT}")
    logger.info(f"📱 Web Interface: http://localhost:{config.PORT}")
    logger.info(f"🔌 ESP32 API Endpoint: http://localhost:{config.PORT}/api")
    logger.info(f"📊 Server Status: http://localhost:{config.PORT}/api/status")
    if config.SIMULATION_MODE:
        logger.info("🎮 Simulation mode enabled - generating demo data while no ESP32 is connected")

    # uvicorn drains in-flight connections on SIGINT/SIGTERM, then the lifespan stops the timers
    uvicorn.run(
        app,
        host=config.HOST,
        port=config.PORT,
        log_level=config.LOG_LEVEL.lower(),
        timeout_graceful_shutdown=config.SHUTDOWN_GRACE_SEC,
    )
    logger.info("Server closed")


if __name__ == "__main__":
    main()
