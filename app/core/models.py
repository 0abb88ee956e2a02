from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


# --- Conversation ---

class Sender(str, Enum):
    AI = "ai"
    HUMAN = "human"


class ChatState(str, Enum):
    GREETING = "GREETING"
    AWAITING_AMOUNT = "AWAITING_AMOUNT"
    PROCESSING_AMOUNT = "PROCESSING_AMOUNT"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    PROCESSING_BET = "PROCESSING_BET"
    PROMPT_PREMIUM = "PROMPT_PREMIUM"
    IDLE_AFTER_NO = "IDLE_AFTER_NO"
    ERROR_BALANCE = "ERROR_BALANCE"
    ERROR_GENERIC = "ERROR_GENERIC"


# States the machine passes through but never waits in for user input.
TRANSIENT_STATES = {ChatState.GREETING, ChatState.PROCESSING_AMOUNT, ChatState.PROCESSING_BET}


class MessageOption(BaseModel):
    """A quick reply offered under an AI message."""
    label: str
    value: str


# --- Strategy & Bets ---

class SuggestedBet(BaseModel):
    game_date: str  # DD/MM/YYYY
    home_team: str
    away_team: str
    bet_amount: float
    odds: float
    house: str
    predicted_winner: str
    justification: str


class Strategy(BaseModel):
    description: str
    suggested_bets: List[SuggestedBet] = Field(default_factory=list)
    risk_assessment: str


class BetResult(str, Enum):
    WON = "won"
    LOST = "lost"
    PENDING = "pending"


class Bet(SuggestedBet):
    id: UUID = Field(default_factory=uuid4)
    result: BetResult = BetResult.PENDING
    gain: Optional[float] = None
    placed_date: str

    @classmethod
    def from_suggestion(cls, suggestion: SuggestedBet, placed_date: str) -> "Bet":
        return cls(**suggestion.model_dump(), placed_date=placed_date)


class Message(BaseModel):
    """
    One entry of the chat log.

    AI messages may carry a `strategy` (rendered as a bet card) and `options`
    (quick replies). A message with `is_loading=True` is the typing
    placeholder: it has no content and is never persisted.
    """
    id: UUID = Field(default_factory=uuid4)
    sender: Sender
    text: Optional[str] = None
    strategy: Optional[Strategy] = None
    options: Optional[List[MessageOption]] = None
    is_loading: bool = False
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def human(cls, text: str) -> "Message":
        return cls(sender=Sender.HUMAN, text=text)

    @classmethod
    def ai(cls, text: str, strategy: Optional[Strategy] = None,
           options: Optional[List[MessageOption]] = None) -> "Message":
        return cls(sender=Sender.AI, text=text, strategy=strategy, options=options)

    @classmethod
    def loading(cls) -> "Message":
        return cls(sender=Sender.AI, is_loading=True)

    def option_values(self) -> List[str]:
        return [option.value for option in self.options or []]


class Conversation(BaseModel):
    state: ChatState = ChatState.GREETING
    pending_bet_amount: Optional[float] = None
    messages: List[Message] = Field(default_factory=list)

    def loading_count(self) -> int:
        return sum(1 for m in self.messages if m.is_loading)

    def last_strategy_message(self) -> Optional[Message]:
        for message in reversed(self.messages):
            if message.sender == Sender.AI and message.strategy is not None:
                return message
        return None


class TurnResult(BaseModel):
    state: ChatState
    messages: List[Message] = Field(default_factory=list)
    navigate_to: Optional[str] = None


# --- Users & Providers ---

class Plan(str, Enum):
    BASIC = "basic"
    PREMIUM = "premium"


class User(BaseModel):
    id: str
    name: str
    plan: Plan = Plan.BASIC

    @property
    def is_premium(self) -> bool:
        return self.plan == Plan.PREMIUM


class WelcomeMessage(BaseModel):
    """Structured output of the greeting provider."""
    welcome_message: str = Field(description="The personalized welcome message for the user.")
    initial_question: str = Field(description="The initial question about the bet amount.")
