"""Utility modules."""

from moai.utils.logging import RequestLogger, get_logger, setup_logging

__all__ = ["setup_logging", "get_logger", "RequestLogger"]
