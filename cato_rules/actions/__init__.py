"""
Rules Engine Actions Package

Exports the suppression gate and the action dispatcher.
"""

from .action_dispatcher import ActionDispatcher, CapabilityHandler
from .suppression_gate import SuppressionGate

__all__ = ["ActionDispatcher", "CapabilityHandler", "SuppressionGate"]
