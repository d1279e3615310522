"""
Core module - Contains configuration, logging, and the error taxonomy.
"""

from secureviewer.core.config import SecureConfig
from secureviewer.core.logging import SecureLogFilter, configure_logging, get_secure_logger

__all__ = ["SecureConfig", "configure_logging", "get_secure_logger", "SecureLogFilter"]
