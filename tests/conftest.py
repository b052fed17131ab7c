"""Pytest configuration and shared fixtures."""
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root before running tests
project_root = Path(__file__).parent.parent
env_path = project_root / ".env"
if env_path.exists():
    load_dotenv(env_path)

# Import shared fixtures to make them available globally
from tests.fixtures.fakes import (  # noqa: F401, E402
    clock,
    observability,
    registry,
    tracker,
)
