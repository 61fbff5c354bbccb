"""
Maestro PMS Connector for Chargeback Connectors
"""

from .connector import MaestroConnector

__all__ = ["MaestroConnector"]
