"""
Alerting package for forwarding sync notices.
"""

from .telegram import TelegramNotifier

__all__ = [
    "TelegramNotifier",
]
