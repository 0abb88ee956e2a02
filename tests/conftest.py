import os

# Keep tests in memory and away from real models
os.environ["CHAT_STORE_PATH"] = ""
os.environ["GOOGLE_API_KEY"] = ""

import pytest

from app.core.errors import ProviderError
from app.core.graph import ConversationController
from app.core.models import Plan, Strategy, SuggestedBet, User, WelcomeMessage
from app.services.bet_book import BetBook
from app.services.conversation_store import ConversationStore, InMemoryKeyValueStore
from app.services.wallet_ledger import WalletLedger


class FakeGreetingProvider:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def welcome(self, user_name, wallet_balance):
        self.calls.append((user_name, wallet_balance))
        if self.fail:
            raise ProviderError("greeting model unavailable")
        return WelcomeMessage(welcome_message=f"Hi {user_name}!", initial_question="How much would you like to bet?")


def make_strategy(amounts):
    houses = ["bet365", "Betfair", "Betway", "bwin", "DAZN"]
    return Strategy(
        description="Test strategy",
        suggested_bets=[
            SuggestedBet(game_date=f"2{i}/05/2025", home_team="Home", away_team="Away", bet_amount=amount,
                         odds=2.0, house=houses[i], predicted_winner="Home", justification="Because.")
            for i, amount in enumerate(amounts)
        ],
        risk_assessment="Moderate",
    )


class FakeStrategyProvider:
    def __init__(self, amounts=(30, 30, 40), fail=False):
        self.amounts = amounts
        self.fail = fail
        self.calls = []

    async def generate(self, wallet_balance, bet_amount):
        self.calls.append((wallet_balance, bet_amount))
        if self.fail:
            raise ProviderError("strategy model unavailable")
        return make_strategy(self.amounts)


class SnapshotRecorder:
    """Records how many loading placeholders each committed snapshot had."""
    def __init__(self):
        self.loading_counts = []

    def __call__(self, conversation):
        self.loading_counts.append(conversation.loading_count())


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def premium_user():
    return User(id="u1", name="Ana", plan=Plan.PREMIUM)


@pytest.fixture
def basic_user():
    return User(id="u2", name="Ben", plan=Plan.BASIC)


@pytest.fixture
def build_controller(kv_store):
    def _build(user=None, balance=500.0, greeting=None, strategy=None, recorder=None, bets=None):
        wallet = WalletLedger(balance)
        bet_book = BetBook(bets)
        controller = ConversationController(
            store=ConversationStore(kv_store, namespace="test"),
            wallet=wallet,
            bet_book=bet_book,
            greeting_provider=greeting or FakeGreetingProvider(),
            strategy_provider=strategy or FakeStrategyProvider(),
            user=user,
            settlement_delay=0,
            on_change=recorder,
        )
        return controller
    return _build
