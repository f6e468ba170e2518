import os

from dotenv import load_dotenv

load_dotenv()

# Server configuration
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
STATIC_DIR = os.getenv("STATIC_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "public"))

# Seconds uvicorn waits for in-flight connections on shutdown
SHUTDOWN_GRACE_SEC = int(os.getenv("SHUTDOWN_GRACE_SEC", "10"))

# Simulation mode generates demo monitoring data while no device is connected
SIMULATION_MODE = os.getenv("SIMULATION_MODE", "true").lower() in ("1", "true", "yes")
SIMULATION_INTERVAL_SEC = float(os.getenv("SIMULATION_INTERVAL_SEC", "2"))

# Device liveness lease
LIVENESS_CHECK_INTERVAL_SEC = float(os.getenv("LIVENESS_CHECK_INTERVAL_SEC", "5"))
LIVENESS_TIMEOUT_SEC = float(os.getenv("LIVENESS_TIMEOUT_SEC", "10"))

# Per-client outbound queue; messages beyond this are dropped for that client
CLIENT_QUEUE_SIZE = int(os.getenv("CLIENT_QUEUE_SIZE", "256"))

# Fixed channel layout of the device image
PUSH_BUTTON_IDS = (1, 2)
TOGGLE_IDS = (1, 2)
SLIDER_IDS = (1, 2, 3, 4)
INDICATOR_IDS = (1, 2, 3, 4)
GAUGE_IDS = (1, 2)
VARIABLE_IDS = (1, 2)

SLIDER_MIN = 0
SLIDER_MAX = 100
GAUGE_MIN = 0
GAUGE_MAX = 100
DEFAULT_SLIDER_VALUE = 50
