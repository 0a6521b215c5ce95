"""Runner configuration and logging setup for flowreplay."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .models import LogLevel
from .utils import to_seconds

ENV_PREFIX = "FLOWREPLAY_"

_LOG_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass
class RunnerConfig:
    """Global configuration for the test orchestrator."""
    concurrency: int = 1
    timeout: float = 30.0
    retries: int = 0
    retry_delay: float = 1.0
    bail: bool = False
    mock_server_host: str = "127.0.0.1"
    mock_server_port: int = 3456
    environment: dict[str, str] = field(default_factory=dict)
    work_dir: str = ".flowreplay-temp"
    coverage: bool = False
    log_level: LogLevel = LogLevel.INFO

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RunnerConfig":
        """
        Build a config from a suite-file style mapping.

        Durations accept milliseconds (bare numbers) or strings like '5s'.
        """
        config = cls()
        if "concurrency" in data:
            config.concurrency = int(data["concurrency"])
        if "timeout" in data:
            config.timeout = to_seconds(data["timeout"])
        if "retries" in data:
            config.retries = int(data["retries"])
        if "retryDelay" in data:
            config.retry_delay = to_seconds(data["retryDelay"])
        if "bail" in data:
            config.bail = bool(data["bail"])
        if "mockServerHost" in data:
            config.mock_server_host = str(data["mockServerHost"])
        if "mockServerPort" in data:
            config.mock_server_port = int(data["mockServerPort"])
        if "environment" in data:
            config.environment = {str(k): str(v) for k, v in (data["environment"] or {}).items()}
        if "workDir" in data:
            config.work_dir = str(data["workDir"])
        if "coverage" in data:
            config.coverage = bool(data["coverage"])
        if "logLevel" in data:
            config.log_level = LogLevel(str(data["logLevel"]).upper())
        return config

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RunnerConfig":
        """Build a config from FLOWREPLAY_* environment variables."""
        environ = os.environ if environ is None else environ
        mapping = {
            "CONCURRENCY": "concurrency",
            "TIMEOUT": "timeout",
            "RETRIES": "retries",
            "RETRY_DELAY": "retryDelay",
            "MOCK_SERVER_HOST": "mockServerHost",
            "MOCK_SERVER_PORT": "mockServerPort",
            "WORK_DIR": "workDir",
            "LOG_LEVEL": "logLevel",
        }
        data: dict[str, Any] = {}
        for env_name, key in mapping.items():
            value = environ.get(ENV_PREFIX + env_name)
            if value is not None and value != "":
                data[key] = value
        for env_name, key in (("BAIL", "bail"), ("COVERAGE", "coverage")):
            value = environ.get(ENV_PREFIX + env_name)
            if value is not None:
                data[key] = value.strip().lower() in ("1", "true", "yes", "on")
        return cls.from_dict(data)


def configure_logging(level: LogLevel = LogLevel.INFO, fmt: Optional[str] = None):
    """Attach a stream handler to the flowreplay logger hierarchy."""
    logger = logging.getLogger("flowreplay")
    logger.setLevel(_LOG_LEVELS[level])
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            fmt or '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logger.addHandler(handler)
    return logger
