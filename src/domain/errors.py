from __future__ import annotations


class BudgetAppError(RuntimeError):
    """Base for errors that carry a message safe to show the user."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BudgetAppError):
    """Input broke a local invariant; nothing was sent to a collaborator."""

    kind = "validation"


class StoreError(BudgetAppError):
    kind = "store"


class AuthError(BudgetAppError):
    kind = "auth"


class ForecastError(BudgetAppError):
    kind = "forecast"
