import logging
import math
from typing import Optional

from app.core.errors import InsufficientFunds, InvalidAmount, PersistenceError

BALANCE_KEY = "wallet_balance"


def _validate_amount(amount) -> float:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidAmount(amount)
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidAmount(amount)
    return float(amount)


class WalletLedger:
    """
    Holds the user's balance. A debit larger than the balance is rejected, the
    balance is never clamped to zero.
    """
    def __init__(self, initial_balance: float = 0.0, kv_store=None, namespace: Optional[str] = None):
        self.kv_store = kv_store
        self.namespace = namespace
        self._balance = float(initial_balance)
        self._load()

    @property
    def _key(self) -> str:
        return f"{self.namespace}:{BALANCE_KEY}"

    def _load(self):
        if self.kv_store is None:
            return
        raw = self.kv_store.get(self._key)
        if raw is None:
            self._save()
            return
        try:
            stored = float(raw)
        except ValueError:
            logging.warning(f"Ignoring corrupt wallet balance '{raw}' for '{self.namespace}'.")
            self._save()
            return
        if math.isfinite(stored) and stored >= 0:
            self._balance = stored

    def _save(self):
        if self.kv_store is None:
            return
        try:
            self.kv_store.set(self._key, repr(self._balance))
        except PersistenceError as e:
            logging.error(f"Could not persist wallet balance for '{self.namespace}': {e}")

    def balance(self) -> float:
        return self._balance

    def debit(self, amount: float) -> float:
        amount = _validate_amount(amount)
        if amount > self._balance:
            raise InsufficientFunds(amount, self._balance)
        self._balance -= amount
        self._save()
        logging.info(f"Wallet debited {amount:.2f}. New balance: {self._balance:.2f}")
        return self._balance

    def credit(self, amount: float) -> float:
        amount = _validate_amount(amount)
        self._balance += amount
        self._save()
        logging.info(f"Wallet credited {amount:.2f}. New balance: {self._balance:.2f}")
        return self._balance

    def clear(self):
        if self.kv_store is not None:
            self.kv_store.delete(self._key)
