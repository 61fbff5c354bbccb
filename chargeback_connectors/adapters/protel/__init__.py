"""
protel PMS Connector for Chargeback Connectors
"""

from .connector import ProtelConnector

__all__ = ["ProtelConnector"]
