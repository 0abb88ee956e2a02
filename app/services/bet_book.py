import json
import logging
from datetime import date, datetime
from typing import Iterable, List, Optional
from uuid import UUID

from pydantic import ValidationError

from app.core.errors import PersistenceError
from app.core.models import Bet, BetResult

BETS_KEY = "placed_bets"


def parse_game_date(value: str) -> date:
    """Parses a DD/MM/YYYY game date; unreadable dates sort as the oldest."""
    try:
        return datetime.strptime(value, "%d/%m/%Y").date()
    except (ValueError, TypeError):
        return date.min


class BetBook:
    """
    Append-only collection of placed bets, kept sorted by game date
    (most recent first) on every insert.
    """
    def __init__(self, bets: Optional[Iterable[Bet]] = None, kv_store=None, namespace: Optional[str] = None):
        self.kv_store = kv_store
        self.namespace = namespace
        self._bets: List[Bet] = []
        if not self._load():
            self._bets = self._sorted(bets or [])
            self._save()

    @property
    def _key(self) -> str:
        return f"{self.namespace}:{BETS_KEY}"

    @staticmethod
    def _sorted(bets: Iterable[Bet]) -> List[Bet]:
        return sorted(bets, key=lambda b: parse_game_date(b.game_date), reverse=True)

    def _load(self) -> bool:
        if self.kv_store is None:
            return False
        raw = self.kv_store.get(self._key)
        if raw is None:
            return False
        try:
            self._bets = self._sorted(Bet.model_validate(entry) for entry in json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logging.warning(f"Discarding corrupt bet list for '{self.namespace}': {e}")
            return False
        return True

    def _save(self):
        if self.kv_store is None:
            return
        try:
            self.kv_store.set(self._key, json.dumps([b.model_dump(mode="json") for b in self._bets]))
        except PersistenceError as e:
            logging.error(f"Could not persist bets for '{self.namespace}': {e}")

    def append(self, bet: Bet):
        self.append_many([bet])

    def append_many(self, bets: Iterable[Bet]):
        new_bets = list(bets)
        known_ids = {b.id for b in self._bets}
        for bet in new_bets:
            if not isinstance(bet, Bet):
                raise TypeError(f"Expected a Bet, got {type(bet).__name__}")
            if bet.id in known_ids:
                raise ValueError(f"Bet {bet.id} has already been placed.")
            known_ids.add(bet.id)
        # sorted() is stable, so bets with equal game dates keep insertion order
        self._bets = self._sorted(self._bets + new_bets)
        self._save()

    def all(self) -> List[Bet]:
        return list(self._bets)

    def settle(self, bet_id: UUID, result: BetResult, gain: Optional[float] = None) -> Bet:
        for index, bet in enumerate(self._bets):
            if bet.id == bet_id:
                settled = bet.model_copy(update={"result": result, "gain": gain})
                self._bets[index] = settled
                self._save()
                return settled
        raise KeyError(f"No bet with id {bet_id}")

    def __len__(self) -> int:
        return len(self._bets)

    def clear(self):
        if self.kv_store is not None:
            self.kv_store.delete(self._key)
