"""
Storage Layer.

This package handles all data persistence: the configuration file, the
users table and the request ledger.
"""

from .config_manager import ConfigManager
from .ledger import RequestLedger
from .users import UserStore

__all__ = ["ConfigManager", "RequestLedger", "UserStore"]
