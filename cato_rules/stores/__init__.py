"""
Rules Engine Stores Package

Collaborator interfaces and the reference store implementations.
"""

from .base import FiringRecordSink, FiringStore, HistoryQuery, RuleStore
from .memory import InMemoryFiringStore, InMemoryRuleStore
from .sqlite_store import SqliteFiringStore

__all__ = [
    "FiringRecordSink",
    "FiringStore",
    "HistoryQuery",
    "RuleStore",
    "InMemoryFiringStore",
    "InMemoryRuleStore",
    "SqliteFiringStore"
]
