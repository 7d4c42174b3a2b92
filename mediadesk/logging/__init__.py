"""Terminal output and logging setup."""
from .rich_logger import QuietProgressReporter, RichProgressReporter, setup_logging

__all__ = ["RichProgressReporter", "QuietProgressReporter", "setup_logging"]
