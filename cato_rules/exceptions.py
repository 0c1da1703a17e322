"""
Custom Exception Hierarchy for the cATO Rules Engine
Provides structured error handling with context preservation.
"""
from typing import Optional, Dict, Any


class CatoRulesError(Exception):
    """Base exception for all rules engine errors."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        tenant_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.component = component
        self.tenant_id = tenant_id
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "component": self.component,
            "tenant_id": self.tenant_id,
            "context": self.context
        }


# -------------------------------------------------------------------------
# CONFIGURATION ERRORS
# -------------------------------------------------------------------------

class ConfigurationError(CatoRulesError):
    """Raised when configuration is invalid or missing."""
    pass


class RuleParseError(ConfigurationError):
    """Raised when a rule definition cannot be parsed."""
    pass


# -------------------------------------------------------------------------
# RULE STORE ERRORS
# -------------------------------------------------------------------------

class RuleStoreError(CatoRulesError):
    """Base class for rule store errors."""
    pass


class RuleStoreUnavailableError(RuleStoreError):
    """Raised when rules for a tenant cannot be loaded."""
    pass


class RuleNotFoundError(RuleStoreError):
    """Raised when a rule id is not known to the store."""
    pass


class ConcurrentUpdateError(RuleStoreError):
    """Raised when a conditional rule update loses a race."""
    pass


# -------------------------------------------------------------------------
# HISTORY / FIRING STORE ERRORS
# -------------------------------------------------------------------------

class HistoryQueryError(CatoRulesError):
    """Raised when the firing history cannot be queried."""
    pass


class FiringStoreError(CatoRulesError):
    """Raised when a firing record cannot be saved or loaded."""
    pass


# -------------------------------------------------------------------------
# ACTION ERRORS
# -------------------------------------------------------------------------

class ActionExecutionError(CatoRulesError):
    """Raised when a capability handler fails."""
    pass


class UnknownActionTypeError(ActionExecutionError):
    """Raised when no handler is registered for an action type."""
    pass


class NotificationError(ActionExecutionError):
    """Raised when notification delivery fails on every channel."""
    pass


# -------------------------------------------------------------------------
# SYSTEM ERRORS
# -------------------------------------------------------------------------

class CollaboratorTimeoutError(CatoRulesError):
    """Raised when an external collaborator exceeds its time budget."""
    pass
