from typing import Optional


class ChatBetError(Exception):
    """Base class for every error raised by the betting assistant."""


class InputValidationError(ChatBetError):
    """User input that cannot be used, e.g. a bet amount that is not a positive number."""


class InvalidAmount(InputValidationError):
    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Amount must be a positive number, got {amount!r}.")


class InsufficientFunds(ChatBetError):
    def __init__(self, amount: float, balance: float):
        self.amount = amount
        self.balance = balance
        super().__init__(f"Amount {amount} exceeds the available balance of {balance}.")


class ProviderError(ChatBetError):
    """A greeting, strategy or summary provider failed to produce a result."""
    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


class PlanRestriction(ChatBetError):
    """The user's plan does not allow the requested action."""


class PersistenceError(ChatBetError):
    """Reading from or writing to the key-value store failed."""


class SessionNotFound(ChatBetError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No active session for '{session_id}'. Please log in first.")
