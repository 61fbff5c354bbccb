"""
Oracle Opera Cloud Connector for Chargeback Connectors
"""

from .connector import OperaCloudConnector

__all__ = ["OperaCloudConnector"]
