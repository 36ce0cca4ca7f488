"""
Class-level access to the category logging system.

    from lingobridge.utils.logger.custom_logging import LoggerMixin

    class CreditLedger(LoggerMixin):
        def __init__(self):
            super().__init__()
            self.logger.info("Ledger ready")

Logger names are "{module}.{Class}", so the routing handler files
lingobridge.billing.* under logs/billing/, the router and circuit breaker
under logs/routing/ and everything else under logs/app/.
"""

import logging
from typing import Optional

from lingobridge.core.logging import get_logger as _get_category_logger
from lingobridge.core.logging.handlers import detect_category


class LogHandler(object):
    def get_logger(self, logger_name: str, category: Optional[str] = None) -> logging.Logger:
        """
        Args:
            logger_name: Name of the logger (usually __name__)
            category: Force a category (app, api, routing, billing)
        """
        if category is None:
            category = detect_category(logger_name)
        if category == "app":
            return _get_category_logger(logger_name)
        return _get_category_logger(logger_name, category=category)


class LoggerMixin:
    """Gives subclasses a `self.logger` named after their module and class."""

    def __init__(self) -> None:
        logger_name = f"{self.__class__.__module__}.{self.__class__.__name__}"
        self.logger = LogHandler().get_logger(logger_name)


def get_logger(name: str, category: Optional[str] = None) -> logging.Logger:
    return LogHandler().get_logger(name, category)
