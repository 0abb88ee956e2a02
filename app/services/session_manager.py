import asyncio
import json
import logging
from threading import Lock
from typing import Dict, Optional

from pydantic import ValidationError

from app.core import config
from app.core.errors import SessionNotFound
from app.core.graph import ConversationController
from app.core.models import Bet, BetResult, Plan, User
from app.providers.bet_summary import build_bet_summary_provider
from app.providers.greeting import build_greeting_provider
from app.providers.strategy import DemoStrategyProvider
from app.services import kv_store
from app.services.bet_book import BETS_KEY, BetBook
from app.services.conversation_store import ConversationStore
from app.services.wallet_ledger import BALANCE_KEY, WalletLedger

USER_KEY = "user"

# Profile used by the preview login, with some settled history to look at.
DEMO_USER = User(id="demo-user", name="Alex Rivera", plan=Plan.PREMIUM)
DEMO_BALANCE = 1000.0
DEMO_BETS = [
    Bet(game_date="18/05/2025", home_team="Boston Celtics", away_team="New York Knicks", bet_amount=40.0,
        odds=1.75, house="bwin", predicted_winner="Boston Celtics", justification="Home advantage.",
        result=BetResult.WON, gain=30.0, placed_date="17/05/2025"),
    Bet(game_date="15/05/2025", home_team="Denver Nuggets", away_team="Oklahoma City Thunder", bet_amount=25.0,
        odds=2.30, house="DAZN", predicted_winner="Denver Nuggets", justification="Strong recent form.",
        result=BetResult.LOST, placed_date="14/05/2025"),
]


class ChatSession:
    """Everything that belongs to one logged-in user."""
    def __init__(self, session_id: str, user: User, wallet: WalletLedger, bet_book: BetBook,
                 controller: ConversationController):
        self.session_id = session_id
        self.user = user
        self.wallet = wallet
        self.bet_book = bet_book
        self.controller = controller
        # Serializes turns; the controller itself is not re-entrant
        self.lock = asyncio.Lock()


class SessionManager:
    """
    Creates, restores and tears down chat sessions. Each session gets its own
    conversation store, wallet and bet book, all namespaced by session id
    inside a shared key-value store.
    """
    def __init__(self, kv_store, greeting_provider, strategy_provider, summary_provider,
                 settlement_delay: float = config.SETTLEMENT_DELAY_SECONDS):
        self.kv_store = kv_store
        self.greeting_provider = greeting_provider
        self.strategy_provider = strategy_provider
        self.summary_provider = summary_provider
        self.settlement_delay = settlement_delay
        self._sessions: Dict[str, ChatSession] = {}
        self._lock = Lock()

    def _user_key(self, session_id: str) -> str:
        return f"{session_id}:{USER_KEY}"

    def _save_user(self, session_id: str, user: User):
        self.kv_store.set(self._user_key(session_id), user.model_dump_json())

    def _load_user(self, session_id: str) -> Optional[User]:
        raw = self.kv_store.get(self._user_key(session_id))
        if raw is None:
            return None
        try:
            return User.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logging.warning(f"Discarding corrupt user profile for session '{session_id}': {e}")
            return None

    def _build_session(self, session_id: str, user: User, initial_balance: float = 0.0,
                       initial_bets=None) -> ChatSession:
        wallet = WalletLedger(initial_balance, kv_store=self.kv_store, namespace=session_id)
        bet_book = BetBook(initial_bets, kv_store=self.kv_store, namespace=session_id)
        controller = ConversationController(
            store=ConversationStore(self.kv_store, namespace=session_id),
            wallet=wallet,
            bet_book=bet_book,
            greeting_provider=self.greeting_provider,
            strategy_provider=self.strategy_provider,
            user=user,
            settlement_delay=self.settlement_delay,
        )
        return ChatSession(session_id, user, wallet, bet_book, controller)

    def _wipe(self, session_id: str):
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.controller.clear()
            session.wallet.clear()
            session.bet_book.clear()
        else:
            ConversationStore(self.kv_store, namespace=session_id).clear()
            for key in (BALANCE_KEY, BETS_KEY):
                self.kv_store.delete(f"{session_id}:{key}")
        self.kv_store.delete(self._user_key(session_id))

    def login(self, session_id: str, preview: bool = False) -> ChatSession:
        """Starts a fresh session; any conversation left from a previous login is discarded."""
        with self._lock:
            self._wipe(session_id)
            if preview:
                user, balance, bets = DEMO_USER.model_copy(), DEMO_BALANCE, DEMO_BETS
            else:
                user, balance, bets = User(id="test-user", name="Test User"), config.INITIAL_BALANCE, []
            self._save_user(session_id, user)
            session = self._build_session(session_id, user, balance, [b.model_copy() for b in bets])
            self._sessions[session_id] = session
            logging.info(f"Session '{session_id}' logged in as '{user.name}' ({user.plan.value}).")
            return session

    def logout(self, session_id: str):
        with self._lock:
            self._wipe(session_id)
            logging.info(f"Session '{session_id}' logged out.")

    def get_session(self, session_id: str) -> ChatSession:
        with self._lock:
            if session_id not in self._sessions:
                # Restore a session persisted before a restart
                user = self._load_user(session_id)
                if user is None:
                    raise SessionNotFound(session_id)
                self._sessions[session_id] = self._build_session(session_id, user)
                logging.info(f"Session '{session_id}' restored from the store.")
            return self._sessions[session_id]

    def recharge(self, session_id: str, amount: float = config.RECHARGE_AMOUNT) -> float:
        return self.get_session(session_id).wallet.credit(amount)

    def set_plan(self, session_id: str, plan: Plan) -> User:
        session = self.get_session(session_id)
        session.user = session.user.model_copy(update={"plan": plan})
        session.controller.user = session.user
        self._save_user(session_id, session.user)
        return session.user

    async def summarize_bets(self, session_id: str) -> str:
        return await self.summary_provider.summarize(self.get_session(session_id).bet_book.all())

    def active_sessions(self) -> int:
        return len(self._sessions)


# Create a singleton instance of the session manager to be used across the app
session_manager = SessionManager(
    kv_store,
    greeting_provider=build_greeting_provider(),
    strategy_provider=DemoStrategyProvider(),
    summary_provider=build_bet_summary_provider(),
)
