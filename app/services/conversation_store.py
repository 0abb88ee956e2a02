import json
import logging
import math
import os
from threading import Lock
from typing import Dict, List, Optional

from pydantic import ValidationError

from app.core.errors import PersistenceError
from app.core.models import ChatState, Conversation, Message, Sender

MESSAGES_KEY = "chat_messages"
STATE_KEY = "chat_state"
BET_AMOUNT_KEY = "chat_bet_amount"


class InMemoryKeyValueStore:
    """String key-value store that lives only as long as the process."""
    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str):
        self._data[key] = value

    def delete(self, key: str):
        self._data.pop(key, None)


class JsonFileKeyValueStore(InMemoryKeyValueStore):
    """
    Key-value store persisted to a local JSON file so state survives restarts.
    The whole file is loaded once and rewritten on every change.
    """
    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self._lock = Lock()
        self._load_from_file()

    def _load_from_file(self):
        if not os.path.exists(self.path):
            logging.info(f"{self.path} not found. Starting with an empty store.")
            return
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logging.error(f"Error loading store from {self.path}: {e}. Starting with an empty store.")
            return
        if not isinstance(data, dict):
            logging.error(f"Store file {self.path} does not contain a JSON object. Starting with an empty store.")
            return
        self._data = {str(k): v for k, v in data.items() if isinstance(v, str)}
        logging.info(f"Store loaded from {self.path} with {len(self._data)} entries.")

    def _save_to_file(self):
        try:
            with open(self.path, 'w') as f:
                json.dump(self._data, f, indent=4)
        except IOError as e:
            raise PersistenceError(f"Error saving store to {self.path}: {e}") from e

    def set(self, key: str, value: str):
        with self._lock:
            super().set(key, value)
            self._save_to_file()

    def delete(self, key: str):
        with self._lock:
            super().delete(key)
            self._save_to_file()


def derive_state_from_log(messages: List[Message]) -> ChatState:
    """
    Infers where a conversation stopped by looking at the options offered in
    the last AI message that had any.
    """
    if not messages:
        return ChatState.GREETING
    for message in reversed(messages):
        if message.sender != Sender.AI or not message.options:
            continue
        values = message.option_values()
        if "yes" in values or "no" in values:
            return ChatState.AWAITING_CONFIRMATION
        if "new_bet" in values:
            return ChatState.IDLE_AFTER_NO
        if "profile" in values:
            return ChatState.PROMPT_PREMIUM
        return ChatState.AWAITING_AMOUNT
    return ChatState.AWAITING_AMOUNT


def resume_state(state: Optional[ChatState], messages: List[Message]) -> ChatState:
    """Maps a stored state onto one the conversation can wait for input in."""
    if not messages:
        return ChatState.GREETING
    if state == ChatState.PROCESSING_AMOUNT:
        return ChatState.AWAITING_AMOUNT
    if state == ChatState.PROCESSING_BET:
        return ChatState.AWAITING_CONFIRMATION
    if state in (None, ChatState.GREETING, ChatState.ERROR_GENERIC):
        return derive_state_from_log(messages)
    return state


class ConversationStore:
    """
    Persists a conversation as three independent entries (messages, state and
    pending bet amount) under a namespace, typically the session id.
    """
    def __init__(self, kv_store, namespace: str = "default"):
        self.kv_store = kv_store
        self.namespace = namespace

    def _key(self, name: str) -> str:
        return f"{self.namespace}:{name}"

    def _read(self, name: str) -> Optional[str]:
        try:
            return self.kv_store.get(self._key(name))
        except PersistenceError as e:
            logging.error(f"Could not read '{self._key(name)}': {e}")
            return None

    def save(self, conversation: Conversation):
        messages = [m.model_dump(mode="json") for m in conversation.messages if not m.is_loading]
        try:
            self.kv_store.set(self._key(MESSAGES_KEY), json.dumps(messages))
            self.kv_store.set(self._key(STATE_KEY), conversation.state.value)
            self.kv_store.set(self._key(BET_AMOUNT_KEY), json.dumps(conversation.pending_bet_amount))
        except PersistenceError as e:
            logging.error(f"Could not persist conversation '{self.namespace}': {e}")

    def _load_messages(self) -> List[Message]:
        raw = self._read(MESSAGES_KEY)
        if raw is None:
            return []
        try:
            entries = json.loads(raw)
            messages = [Message.model_validate(entry) for entry in entries]
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logging.warning(f"Discarding corrupt chat messages for '{self.namespace}': {e}")
            return []
        return [m for m in messages if not m.is_loading]

    def _load_state(self) -> Optional[ChatState]:
        raw = self._read(STATE_KEY)
        if raw is None:
            return None
        try:
            return ChatState(raw)
        except ValueError:
            logging.warning(f"Discarding unknown chat state '{raw}' for '{self.namespace}'.")
            return None

    def _load_bet_amount(self) -> Optional[float]:
        raw = self._read(BET_AMOUNT_KEY)
        if raw is None:
            return None
        try:
            amount = json.loads(raw)
        except json.JSONDecodeError as e:
            logging.warning(f"Discarding corrupt bet amount for '{self.namespace}': {e}")
            return None
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            return None
        if not math.isfinite(amount) or amount <= 0:
            logging.warning(f"Discarding invalid bet amount {amount!r} for '{self.namespace}'.")
            return None
        return float(amount)

    def load(self) -> Conversation:
        messages = self._load_messages()
        stored_state = self._load_state()
        # An amount still being processed was never accepted
        pending = None if stored_state == ChatState.PROCESSING_AMOUNT else self._load_bet_amount()
        return Conversation(state=resume_state(stored_state, messages), pending_bet_amount=pending, messages=messages)

    def clear(self):
        for name in (MESSAGES_KEY, STATE_KEY, BET_AMOUNT_KEY):
            try:
                self.kv_store.delete(self._key(name))
            except PersistenceError as e:
                logging.error(f"Could not delete '{self._key(name)}': {e}")
