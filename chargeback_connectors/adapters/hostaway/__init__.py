"""
Hostaway Connector for Chargeback Connectors
"""

from .connector import HostawayConnector

__all__ = ["HostawayConnector"]
