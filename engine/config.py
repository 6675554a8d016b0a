"""
Centralized configuration for the Social Deck online game engine.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.REDIS_URL)
    print(config.game_defaults.TURN_DURATION_SECONDS)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if it exists
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class GameDefaults:
    """Default rule settings shared by both online games."""
    COLOR_CLASH_HAND_SIZE: int = 7
    TURN_DURATION_SECONDS: float = 30.0
    DEALER_STAND_VALUE: int = 17
    DEALER_DRAW_DELAY: float = 0.5  # pause between dealer draws, for observers
    MIN_PLAYERS: int = 2
    MAX_PLAYERS: int = 8


@dataclass
class EngineConfig:
    """Engine configuration."""
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Shared state stores ("memory", "redis" or "postgres")
    SNAPSHOT_BACKEND: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    DATABASE_URL: str = ""
    SNAPSHOT_TTL_HOURS: int = 24

    # Write retries for transport failures
    SYNC_WRITE_RETRIES: int = 3
    SYNC_RETRY_BACKOFF: float = 0.25

    game_defaults: GameDefaults = field(default_factory=GameDefaults)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load configuration from environment variables."""
        return cls(
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            SNAPSHOT_BACKEND=get_env("SNAPSHOT_BACKEND", "memory"),
            REDIS_URL=get_env("REDIS_URL", "redis://localhost:6379/0"),
            DATABASE_URL=get_env("DATABASE_URL", ""),
            SNAPSHOT_TTL_HOURS=get_env_int("SNAPSHOT_TTL_HOURS", 24),
            SYNC_WRITE_RETRIES=get_env_int("SYNC_WRITE_RETRIES", 3),
            SYNC_RETRY_BACKOFF=get_env_float("SYNC_RETRY_BACKOFF", 0.25),
            game_defaults=GameDefaults(
                COLOR_CLASH_HAND_SIZE=get_env_int("COLOR_CLASH_HAND_SIZE", 7),
                TURN_DURATION_SECONDS=get_env_float("TURN_DURATION_SECONDS", 30.0),
                DEALER_STAND_VALUE=get_env_int("DEALER_STAND_VALUE", 17),
                DEALER_DRAW_DELAY=get_env_float("DEALER_DRAW_DELAY", 0.5),
                MIN_PLAYERS=get_env_int("MIN_PLAYERS", 2),
                MAX_PLAYERS=get_env_int("MAX_PLAYERS", 8),
            ),
        )


# Global config instance - loaded once at module import
config = EngineConfig.from_env()

