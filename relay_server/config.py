"""Relay server configuration.

All settings can be overridden via environment variables.
Configuration is loaded from the file named by RELAY_ENV_FILE (default ./relay.env).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load relay.env; variables already present in the environment win
_env_path = Path(os.environ.get("RELAY_ENV_FILE", "relay.env"))
load_dotenv(_env_path)

# --- Server ---
RELAY_HOST = os.environ.get("RELAY_HOST", "0.0.0.0")
RELAY_PORT = int(os.environ.get("RELAY_PORT", "3100"))
RELAY_WS_PATH = os.environ.get("RELAY_WS_PATH", "/api/connect")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# --- Pending registry (connections that have not sent send/recive yet) ---
PENDING_TTL = float(os.environ.get("PENDING_TTL", "600"))
PENDING_MAX = int(os.environ.get("PENDING_MAX", "8192"))

# --- Paired registry (senders waiting for a receiver, and live sessions) ---
PAIRED_TTL = float(os.environ.get("PAIRED_TTL", "600"))
PAIRED_MAX = int(os.environ.get("PAIRED_MAX", "20000"))

# --- Pairing codes ---
CODE_LENGTH = int(os.environ.get("CODE_LENGTH", "4"))
CODE_ATTEMPTS = int(os.environ.get("CODE_ATTEMPTS", "2048"))

# How often the background task evicts expired registry entries
SWEEP_INTERVAL = float(os.environ.get("SWEEP_INTERVAL", "1.0"))

# Frames queued for one slow connection before it is closed (0 = unbounded)
OUTBOX_MAX = int(os.environ.get("OUTBOX_MAX", "1024"))

# --- Client ---
RELAY_URL = os.environ.get("RELAY_URL", f"ws://localhost:{RELAY_PORT}{RELAY_WS_PATH}")
