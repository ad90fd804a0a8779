"""Application-wide configuration constants."""

import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Probe tool ---
PROBE_TOOL = os.getenv("PRESENCE_PROBE_TOOL", "l2ping")
LOOKUP_TOOL = os.getenv("PRESENCE_LOOKUP_TOOL", "which")  # used once to confirm PROBE_TOOL exists
DEFAULT_PROBE_COUNT = 1
DEFAULT_PROBE_TIMEOUT = 5  # seconds

# --- Scanning ---
SCAN_INTERVAL = float(os.getenv("PRESENCE_SCAN_INTERVAL", "15"))  # seconds
DEVICES = [
    mac.strip()
    for mac in os.getenv("PRESENCE_DEVICES", "").split(",")
    if mac.strip()
]
AUTOSTART = _env_bool("PRESENCE_AUTOSTART", False)
REPORT_FIRST_RESULT = _env_bool("PRESENCE_REPORT_FIRST_RESULT", True)

# --- Networking ---
API_HOST = os.getenv("PRESENCE_API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("PRESENCE_API_PORT", "8765"))
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "PRESENCE_CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
    ).split(",")
    if origin.strip()
]
