# backend/tests/conftest.py
"""
Pytest configuration for the booking engine.

Environment is pinned BEFORE any booking_engine import so the settings
singleton never points at a real database or Redis instance.
"""

import os
import sys

# CRITICAL: Set testing configuration BEFORE any engine imports!
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["BOOKING_LOCK_ENABLED"] = "false"
os.environ.setdefault("DEFAULT_TIMEZONE", "UTC")

# Add the backend directory to Python path so imports work without install
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from booking_engine.core.config import settings  # noqa: E402

assert settings.booking_lock_enabled is False, "Tests must not take the Redis mutex"
