"""
Hotelogix Connector for Chargeback Connectors
"""

from .connector import HotelogixConnector

__all__ = ["HotelogixConnector"]
