"""
Lodgify Connector for Chargeback Connectors
"""

from .connector import LodgifyConnector

__all__ = ["LodgifyConnector"]
