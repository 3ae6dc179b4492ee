"""
Settings for the GGompertz/NBD estimation package.

Values come from environment variables, optionally seeded from a ``.env``
file in the project root. Numerical settings (quadrature, optimizer,
prediction horizon) live in ``EstimationConfig``; ``LoggingConfig`` sets up
the root logger once per process.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Project root: src/ggomnbd/config/settings.py -> four levels up
PROJECT_ROOT = Path(__file__).resolve().parents[3]


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


class EstimationConfig:
    """Quadrature, optimizer and prediction settings."""

    def __init__(self):
        # Adaptive quadrature, one integral per customer
        self.quad_abs_tol = _env_float("QUAD_ABS_TOL", "1e-8")
        self.quad_rel_tol = _env_float("QUAD_REL_TOL", "1e-8")
        self.quad_limit = _env_int("QUAD_LIMIT", "1000")
        self.integration_workers = _env_int("INTEGRATION_WORKERS", "1")

        # scipy.optimize.minimize
        self.optimizer_method = os.getenv("OPTIMIZER_METHOD", "L-BFGS-B")
        self.optimizer_method_cor = os.getenv("OPTIMIZER_METHOD_COR", "Nelder-Mead")
        self.optimizer_maxiter = _env_int("OPTIMIZER_MAXITER", "5000")

        self.prediction_periods = _env_float("PREDICTION_PERIODS", "52")
        self.model_output_dir = Path(os.getenv("MODEL_OUTPUT_DIR", "models/"))

    def validate(self) -> None:
        """Raise ValueError if any numeric setting is out of range."""
        if min(self.quad_abs_tol, self.quad_rel_tol) < 0:
            raise ValueError("Quadrature tolerances must be non-negative")
        if self.quad_abs_tol == 0 and self.quad_rel_tol == 0:
            raise ValueError("At least one quadrature tolerance must be positive")

        for name, value in (
            ("QUAD_LIMIT", self.quad_limit),
            ("INTEGRATION_WORKERS", self.integration_workers),
            ("OPTIMIZER_MAXITER", self.optimizer_maxiter),
        ):
            if value < 1:
                raise ValueError(f"{name} must be at least 1, got {value}")

        if self.prediction_periods < 0:
            raise ValueError("PREDICTION_PERIODS must be non-negative")


class LoggingConfig:
    """Log level, format and optional log file."""

    def __init__(self):
        self.level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.format = os.getenv("LOG_FORMAT", DEFAULT_LOG_FORMAT)
        self.log_file = os.getenv("LOG_FILE") or None

    def configure_logging(self) -> None:
        """Attach a stream handler (and a file handler if LOG_FILE is set) to the root logger."""
        handlers = [logging.StreamHandler()]
        if self.log_file:
            Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.log_file))

        logging.basicConfig(
            level=getattr(logging, self.level, logging.INFO),
            format=self.format,
            handlers=handlers
        )


class AppConfig:
    """Process-wide configuration: estimation and logging sections plus environment flags."""

    def __init__(self):
        self._read_dotenv()

        self.estimation = EstimationConfig()
        self.logging = LoggingConfig()
        self.environment = os.getenv("ENVIRONMENT", "development")
        self.debug = os.getenv("DEBUG", "False").lower() == "true"

        self.logging.configure_logging()
        logging.getLogger(__name__).info(
            f"Configuration loaded for environment: {self.environment} (debug={self.debug})"
        )

    @staticmethod
    def _read_dotenv() -> None:
        """Seed os.environ from PROJECT_ROOT/.env without overriding set variables."""
        env_path = PROJECT_ROOT / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logging.getLogger(__name__).info(f"Loaded environment from {env_path}")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    def validate_config(self) -> bool:
        """Validate all sections; errors are logged, not raised."""
        try:
            self.estimation.validate()
        except ValueError as e:
            logging.getLogger(__name__).error(f"Invalid configuration: {e}")
            return False
        return True


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, creating it on first use."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config


def reload_config() -> AppConfig:
    """Re-read the environment and replace the process-wide configuration."""
    global _config
    _config = AppConfig()
    return _config
