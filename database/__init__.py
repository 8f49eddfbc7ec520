"""PortLedger Database — sqlite3 history store"""
from database.repository import HistoryStore
from database.migrations import migrate, get_version, LATEST_VERSION
__all__ = ["HistoryStore", "migrate", "get_version", "LATEST_VERSION"]
