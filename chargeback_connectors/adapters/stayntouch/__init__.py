"""
StayNTouch Connector for Chargeback Connectors
"""

from .connector import StayNTouchConnector

__all__ = ["StayNTouchConnector"]
