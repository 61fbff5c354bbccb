"""
Mews Connector for Chargeback Connectors
"""

from .connector import MewsConnector

__all__ = ["MewsConnector"]
