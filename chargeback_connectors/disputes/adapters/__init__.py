"""Dispute portal adapters"""

from .fiserv import FiservAdapter
from .visa_vrol import VisaVROLAdapter

__all__ = ["FiservAdapter", "VisaVROLAdapter"]
