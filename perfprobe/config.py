import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class EngineConfig:
    fcp_timeout_ms: int = 30000
    navigation_timeout_ms: int = 60000
    settle_ms: int = 2000
    run_budget_ms: int = 90000
    fetch_timeout: int = 30
    headless: bool = True
    chromium_path: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "EngineConfig":
        """
        Build configuration from PERFPROBE_* environment variables.

        Args:
            load_dotenv_file: Whether to read a .env file first

        Returns:
            EngineConfig with defaults for unset variables

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        if load_dotenv_file:
            load_dotenv()

        return cls(
            fcp_timeout_ms=_int_env('PERFPROBE_FCP_TIMEOUT_MS', cls.fcp_timeout_ms),
            navigation_timeout_ms=_int_env('PERFPROBE_NAVIGATION_TIMEOUT_MS', cls.navigation_timeout_ms),
            settle_ms=_int_env('PERFPROBE_SETTLE_MS', cls.settle_ms),
            run_budget_ms=_int_env('PERFPROBE_RUN_BUDGET_MS', cls.run_budget_ms),
            fetch_timeout=_int_env('PERFPROBE_FETCH_TIMEOUT', cls.fetch_timeout),
            headless=os.getenv('PERFPROBE_HEADLESS', 'true').strip().lower() not in ('0', 'false', 'no'),
            chromium_path=os.getenv('PERFPROBE_CHROMIUM_PATH') or None,
            log_level=os.getenv('PERFPROBE_LOG_LEVEL', cls.log_level).upper(),
        )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} cannot be negative, got {value}")
    return value


def configure_logging(level: str = "INFO"):
    """Setup logging for command line use."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logging.getLogger("perfprobe").setLevel(getattr(logging, level.upper(), logging.INFO))
