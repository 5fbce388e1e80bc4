"""
Custom exception classes for the OmniVerse budget planning service.
"""


class OmniVerseException(Exception):
    """Base exception for the budget planning service."""
    pass


class ConfigurationError(OmniVerseException):
    """Raised when a channel profile or constraint set is invalid."""

    def __init__(self, message: str, channel: str = None):
        super().__init__(message)
        self.channel = channel


class InfeasibleBudgetError(OmniVerseException):
    """Raised when the budget cannot cover the summed channel floors."""

    def __init__(self, message: str, total_budget: float = 0.0, required: float = 0.0):
        super().__init__(message)
        self.total_budget = total_budget
        self.required = required


class NumericDomainError(OmniVerseException):
    """
    Describes a response curve value that is NaN or infinite.

    Recorded in the log when the value is floored to zero; never raised.
    """
    pass


class OptimizationError(OmniVerseException):
    """Raised when an optimization request is invalid."""
    pass
