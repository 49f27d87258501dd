"""Core configuration, logging and error types."""

from .config import AppConfig, FieldLayout, load_app_config  # noqa: F401
from .enums import Classification, RunStatus  # noqa: F401
from .logging import configure_logging, get_logger  # noqa: F401
