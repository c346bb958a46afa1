# File: config.py
"""
Runtime configuration for the PMOS tenant network control plane.

Everything is read from the environment so the same image runs locally,
in CI, and behind the deployment pipeline without code changes.
"""

import os

DB_DIR = os.getenv("PMOS_DB_DIR", "/tmp")
DB_PATH = os.getenv("PMOS_DB_PATH", os.path.join(DB_DIR, "pmos_network.db"))
SQLALCHEMY_DATABASE_URL = os.getenv("PMOS_DATABASE_URL", f"sqlite:///{DB_PATH}")

DEFAULT_PROVIDER = os.getenv("PMOS_PROVIDER", "azure")
DEFAULT_REGION = os.getenv("PMOS_REGION", "eastus")

# Source range allowed to reach the management port of publicly reachable instances
MANAGEMENT_SOURCE = os.getenv("PMOS_MANAGEMENT_SOURCE", "0.0.0.0/0")

LOG_DIR = os.getenv("PMOS_LOG_DIR")
LOG_LEVEL = os.getenv("PMOS_LOG_LEVEL", "INFO")

REST_PORT = int(os.getenv("REST_PORT", 8000))
