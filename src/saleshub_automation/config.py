"""Configuration for the SalesHub automation queue and orchestrator.

Usage:
    from saleshub_automation.config import Config

    # Access config values
    database_url = Config.QUEUE_DATABASE_URL
    poll_interval = Config.QUEUE_POLL_INTERVAL
"""

import os
from pathlib import Path


class Config:
    """Centralized configuration for the queue server and automation clients.

    All configuration values are class variables that can be accessed directly.
    Values are loaded from environment variables with sensible defaults.

    Example:
        from saleshub_automation.config import Config

        print(Config.SALESHUB_DIR)
        print(Config.JOB_TOTAL_TIMEOUT)
    """

    # ========================================================================
    # Helper methods (static)
    # ========================================================================

    @staticmethod
    def _get_saleshub_dir() -> str:
        """Get SALESHUB_DIR, creating it when missing.

        Returns:
            Validated SALESHUB_DIR path

        Raises:
            ValueError: If SALESHUB_DIR exists but is not writable
        """
        saleshub_dir = os.getenv("SALESHUB_DIR") or str(Path.home() / ".saleshub")
        Path(saleshub_dir).mkdir(parents=True, exist_ok=True)

        if not os.access(saleshub_dir, os.W_OK):
            raise ValueError(f"SALESHUB_DIR has no write permission: {saleshub_dir}")

        return saleshub_dir

    @staticmethod
    def _get_value(key: str, default: str) -> str:
        """Get configuration value from environment with optional default."""
        return os.getenv(key, default)

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        """Get integer configuration value."""
        return int(os.getenv(key, str(default)))

    @staticmethod
    def _get_float(key: str, default: float) -> float:
        """Get float configuration value (seconds)."""
        return float(os.getenv(key, str(default)))

    @staticmethod
    def _get_bool(key: str, default: bool = False) -> bool:
        """Get boolean configuration value."""
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    # ========================================================================
    # Common Configuration
    # ========================================================================

    SALESHUB_DIR: str = _get_saleshub_dir()
    LOG_LEVEL: str = _get_value("LOG_LEVEL", "INFO")

    # ========================================================================
    # Queue Server Configuration
    # ========================================================================

    QUEUE_DATABASE_URL: str = _get_value(
        "QUEUE_DATABASE_URL", f"sqlite:///{SALESHUB_DIR}/automation_queue.db"
    )
    SERVER_HOST: str = _get_value("SERVER_HOST", "127.0.0.1")
    SERVER_PORT: int = _get_int("SERVER_PORT", 8000)
    DEFAULT_USER_NAME: str = "Guest"
    DEFAULT_PROCESS_TYPE: str = "Coverage Plot"

    # ========================================================================
    # Automation Client Configuration
    # ========================================================================

    QUEUE_API_URL: str = _get_value("QUEUE_API_URL", "http://127.0.0.1:8000")
    JOB_RUNNER_URL: str = _get_value("JOB_RUNNER_URL", "http://127.0.0.1:3001")
    LOCAL_STATE_PATH: str = _get_value("LOCAL_STATE_PATH", f"{SALESHUB_DIR}/local_state.json")

    # Timers, all in seconds
    QUEUE_POLL_INTERVAL: float = _get_float("QUEUE_POLL_INTERVAL", 3.0)
    RESUME_POLL_INTERVAL: float = _get_float("RESUME_POLL_INTERVAL", 3.0)
    JOB_TOTAL_TIMEOUT: float = _get_float("JOB_TOTAL_TIMEOUT", 6 * 60)
    JOB_STALL_TIMEOUT: float = _get_float("JOB_STALL_TIMEOUT", 5 * 60)
    WATCHDOG_CHECK_INTERVAL: float = _get_float("WATCHDOG_CHECK_INTERVAL", 15.0)
    STATE_EXPIRY_SECONDS: float = _get_float("STATE_EXPIRY_SECONDS", 60 * 60)
    DISPLAY_MAX_AGE_SECONDS: float = _get_float("DISPLAY_MAX_AGE_SECONDS", 6 * 60)
    IDLE_TIMEOUT_SECONDS: float = _get_float("IDLE_TIMEOUT_SECONDS", 15 * 60)
    MAX_STATUS_FAILURES: int = _get_int("MAX_STATUS_FAILURES", 5)
    LEASE_RENEWAL_ENABLED: bool = _get_bool("LEASE_RENEWAL_ENABLED", True)

    # ========================================================================
    # Realtime Queue Feed (MQTT)
    # ========================================================================

    BROADCAST_TYPE: str = _get_value("BROADCAST_TYPE", "none")
    MQTT_BROKER: str = _get_value("MQTT_BROKER", "localhost")
    MQTT_PORT: int = _get_int("MQTT_PORT", 1883)
    MQTT_TOPIC: str = _get_value("MQTT_TOPIC", "saleshub/queue")
