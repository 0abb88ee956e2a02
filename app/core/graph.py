import asyncio
import logging
import math
import re
from datetime import datetime
from typing import Callable, List, Optional, TypedDict, Union

from langgraph.graph import StateGraph, START, END

from app.core import config
from app.core.errors import (
    ChatBetError,
    InputValidationError,
    InsufficientFunds,
    PlanRestriction,
    ProviderError,
)
from app.core.models import (
    Bet,
    ChatState,
    Conversation,
    Message,
    MessageOption,
    Strategy,
    TRANSIENT_STATES,
    TurnResult,
    User,
)
from app.services.conversation_store import resume_state

# --- Quick replies ---
QUICK_AMOUNT_OPTIONS = [MessageOption(label=f"{amount}€", value=str(amount)) for amount in config.QUICK_AMOUNTS]
CONFIRM_OPTIONS = [MessageOption(label="Yes, place bets", value="yes"), MessageOption(label="No, thanks", value="no")]
FOLLOW_UP_OPTIONS = [MessageOption(label="Start new bet", value="new_bet"), MessageOption(label="No, that's all", value="end_chat")]
PREMIUM_OPTIONS = [MessageOption(label="Go to Profile", value="profile"), MessageOption(label="Maybe later", value="later")]

_LEADING_NUMBER = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)")


def parse_bet_amount(value) -> Optional[float]:
    """
    Reads the number at the start of the input, so "50€" and "50 euros" both
    give 50. Returns None unless the result is a positive finite number.
    Exponents ("1e3") and "Infinity" are not read as amounts.
    """
    match = _LEADING_NUMBER.match(str(value))
    if not match:
        return None
    amount = float(match.group(0))
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


def format_euros(amount: float) -> str:
    return f"{amount:.2f}".rstrip("0").rstrip(".")


def normalize_action(value: str) -> str:
    return "_".join(str(value).strip().lower().split())


# --- Graph State ---
class TurnState(TypedDict):
    action: str
    # Generation token captured when the turn started; responses arriving
    # after it changed belong to a superseded conversation.
    generation: int
    navigate_to: Optional[str]
    retry: bool
    place_bets: bool
    handled_by: str


class ConversationController:
    """
    Drives the betting dialogue as a finite-state machine.

    Each human input is appended to the log together with a loading
    placeholder, then routed through a LangGraph `StateGraph` whose entry
    point dispatches on the current `ChatState`. Nodes talk to the providers,
    commit wallet and bet-book changes, and append the AI reply, which always
    replaces the placeholder in a single step.

    The controller is not safe for concurrent `submit()` calls on the same
    conversation; callers must wait for one turn to finish before sending
    the next.
    """

    def __init__(
        self,
        store,
        wallet,
        bet_book,
        greeting_provider,
        strategy_provider,
        user: Optional[User] = None,
        settlement_delay: float = config.SETTLEMENT_DELAY_SECONDS,
        on_change: Optional[Callable[[Conversation], None]] = None,
    ):
        self.store = store
        self.wallet = wallet
        self.bet_book = bet_book
        self.greeting_provider = greeting_provider
        self.strategy_provider = strategy_provider
        self.user = user
        self.settlement_delay = settlement_delay
        self.on_change = on_change
        self.conversation = store.load()
        self._generation = 0
        self._turn_messages: List[Message] = []
        self.graph = self._build_graph()

    # --- Graph Construction ---
    def _build_graph(self):
        workflow = StateGraph(TurnState)
        workflow.add_node("awaiting_amount", self._handle_amount)
        workflow.add_node("awaiting_confirmation", self._handle_confirmation)
        workflow.add_node("place_bets", self._place_bets)
        workflow.add_node("prompt_premium", self._handle_premium_prompt)
        workflow.add_node("idle_after_no", self._handle_idle)
        workflow.add_node("error_balance", self._handle_balance_error)
        workflow.add_node("fallback", self._handle_unknown_state)

        workflow.add_conditional_edges(
            START,
            self._route,
            {
                "awaiting_amount": "awaiting_amount",
                "awaiting_confirmation": "awaiting_confirmation",
                "prompt_premium": "prompt_premium",
                "idle_after_no": "idle_after_no",
                "error_balance": "error_balance",
                "fallback": "fallback",
            },
        )
        workflow.add_conditional_edges(
            "awaiting_confirmation",
            lambda turn: "place_bets" if turn["place_bets"] else END,
            {"place_bets": "place_bets", END: END},
        )
        workflow.add_conditional_edges(
            "error_balance",
            lambda turn: "retry" if turn["retry"] else END,
            {"retry": "awaiting_amount", END: END},
        )
        for node in ("awaiting_amount", "place_bets", "prompt_premium", "idle_after_no", "fallback"):
            workflow.add_edge(node, END)
        return workflow.compile()

    def _route(self, turn: TurnState) -> str:
        routes = {
            ChatState.AWAITING_AMOUNT: "awaiting_amount",
            ChatState.AWAITING_CONFIRMATION: "awaiting_confirmation",
            ChatState.PROMPT_PREMIUM: "prompt_premium",
            ChatState.IDLE_AFTER_NO: "idle_after_no",
            ChatState.ERROR_BALANCE: "error_balance",
        }
        return routes.get(self.conversation.state, "fallback")

    # --- Conversation Mutations ---
    def _commit(self):
        self.store.save(self.conversation)
        if self.on_change:
            self.on_change(self.conversation)

    def _show_loading(self):
        if not self.conversation.loading_count():
            self.conversation.messages.append(Message.loading())

    def _transition(self, state: ChatState, clear_amount: bool = False):
        self.conversation.state = state
        if clear_amount:
            self.conversation.pending_bet_amount = None
        self._commit()

    def _reply(
        self,
        text: str,
        strategy: Optional[Strategy] = None,
        options: Optional[List[MessageOption]] = None,
        state: Optional[ChatState] = None,
        clear_amount: bool = False,
    ):
        message = Message.ai(text, strategy=strategy, options=list(options) if options else None)
        # Dropping the placeholder and adding the reply is one snapshot
        self.conversation.messages = [m for m in self.conversation.messages if not m.is_loading] + [message]
        self._turn_messages.append(message)
        if state is not None:
            self.conversation.state = state
        if clear_amount:
            self.conversation.pending_bet_amount = None
        self._commit()

    def _is_stale(self, turn: TurnState) -> bool:
        if turn["generation"] != self._generation:
            logging.info("Discarding a response that belongs to a superseded conversation.")
            return True
        return False

    def _result(self, navigate_to: Optional[str] = None) -> TurnResult:
        return TurnResult(state=self.conversation.state, messages=list(self._turn_messages), navigate_to=navigate_to)

    # --- Public API ---
    async def start(self, user: User, balance: Optional[float] = None) -> TurnResult:
        """Greets the user once. Does nothing when the conversation already has messages."""
        self.user = user
        self._turn_messages = []
        if self.conversation.messages or self.conversation.state != ChatState.GREETING:
            return self._result()
        if balance is None:
            balance = self.wallet.balance()

        turn = {"generation": self._generation}
        self._show_loading()
        self._commit()
        try:
            welcome = await self.greeting_provider.welcome(user.name, balance)
        except ProviderError as e:
            if self._is_stale(turn):
                return self._result()
            logging.error(f"Error getting welcome message: {e}")
            self._reply("Sorry, I'm having trouble starting up. Please try again later.", state=ChatState.ERROR_GENERIC)
            return self._result()

        if self._is_stale(turn):
            return self._result()
        self._reply(
            f"{welcome.welcome_message} {welcome.initial_question}",
            options=QUICK_AMOUNT_OPTIONS,
            state=ChatState.AWAITING_AMOUNT,
        )
        return self._result()

    async def submit(self, user_input: Union[str, MessageOption, dict]) -> TurnResult:
        """Handles one human input, either free text or a chosen quick reply."""
        if isinstance(user_input, dict):
            user_input = MessageOption(**user_input)
        if isinstance(user_input, MessageOption):
            text, value = user_input.label, user_input.value
        else:
            text = value = str(user_input)

        self._turn_messages = []
        self.conversation.messages.append(Message.human(text))
        self._show_loading()
        self._commit()

        logging.info(f"Handling input '{value}' in state {self.conversation.state.value}")
        final = await self.graph.ainvoke({
            "action": value,
            "generation": self._generation,
            "navigate_to": None,
            "retry": False,
            "place_bets": False,
            "handled_by": "",
        })
        return self._result(navigate_to=final.get("navigate_to"))

    def cancel(self):
        """
        Abandons any in-flight turn, e.g. when the user navigates away.
        Late provider responses are discarded and a transient state falls back
        to the state that was waiting for input before it.
        """
        self._generation += 1
        conversation = self.conversation
        conversation.messages = [m for m in conversation.messages if not m.is_loading]
        if conversation.state == ChatState.PROCESSING_AMOUNT:
            conversation.pending_bet_amount = None
        if conversation.state in TRANSIENT_STATES:
            conversation.state = resume_state(conversation.state, conversation.messages)
        self._commit()

    def clear(self):
        """Forgets the whole conversation, including its persisted entries."""
        self._generation += 1
        self.store.clear()
        self.conversation = Conversation()
        if self.on_change:
            self.on_change(self.conversation)

    def is_busy(self) -> bool:
        return self.conversation.loading_count() > 0

    def accepts_input(self) -> bool:
        if self.is_busy() or self.user is None:
            return False
        return self.conversation.state not in TRANSIENT_STATES | {ChatState.ERROR_GENERIC}

    def input_hint(self) -> str:
        state = self.conversation.state
        if self.is_busy():
            return "Waiting for BetMaestro..."
        if state in (ChatState.AWAITING_AMOUNT, ChatState.ERROR_BALANCE):
            return "Enter bet amount or choose an option"
        if state in (ChatState.AWAITING_CONFIRMATION, ChatState.PROMPT_PREMIUM, ChatState.IDLE_AFTER_NO):
            return "Choose an option or type your response"
        return "Type your message..."

    # --- Validation ---
    def _check_amount(self, value: str) -> float:
        amount = parse_bet_amount(value)
        if amount is None:
            raise InputValidationError(f"'{value}' is not a positive bet amount.")
        balance = self.wallet.balance()
        if amount > balance:
            raise InsufficientFunds(amount, balance)
        return amount

    def _require_premium(self):
        if self.user is None or not self.user.is_premium:
            raise PlanRestriction("Placing bets requires the premium plan.")

    # --- Graph Nodes ---
    async def _handle_amount(self, turn: TurnState):
        try:
            amount = self._check_amount(turn["action"])
        except InsufficientFunds as e:
            logging.warning(f"Bet amount rejected: {e}")
            self._reply(
                f"Your bet of {format_euros(e.amount)}€ exceeds your wallet balance of {format_euros(e.balance)}€. "
                "Please enter a smaller amount or recharge your wallet.",
                options=QUICK_AMOUNT_OPTIONS,
                state=ChatState.ERROR_BALANCE,
            )
            return {"handled_by": "awaiting_amount"}
        except InputValidationError as e:
            logging.warning(f"Bet amount rejected: {e}")
            self._reply("Please enter a valid positive number for your bet amount.", options=QUICK_AMOUNT_OPTIONS)
            return {"handled_by": "awaiting_amount"}

        balance = self.wallet.balance()
        self.conversation.pending_bet_amount = amount
        self._transition(ChatState.PROCESSING_AMOUNT)
        try:
            strategy = await self.strategy_provider.generate(balance, amount)
        except ProviderError as e:
            if self._is_stale(turn):
                return {"handled_by": "awaiting_amount"}
            logging.error(f"Error generating strategy: {e}")
            self._reply(
                "Sorry, I couldn't generate a strategy right now. Please try again.",
                state=ChatState.AWAITING_AMOUNT,
                clear_amount=True,
            )
            return {"handled_by": "awaiting_amount"}

        if self._is_stale(turn):
            return {"handled_by": "awaiting_amount"}
        self._reply(
            f"Here's a strategy for your {format_euros(amount)}€ bet:",
            strategy=strategy,
            options=CONFIRM_OPTIONS,
            state=ChatState.AWAITING_CONFIRMATION,
        )
        return {"handled_by": "awaiting_amount"}

    async def _handle_confirmation(self, turn: TurnState):
        action = normalize_action(turn["action"])
        if action == "yes":
            try:
                self._require_premium()
            except PlanRestriction:
                self._reply(
                    "Placing bets is a Premium feature. Please upgrade your plan in your Profile to proceed.",
                    options=PREMIUM_OPTIONS,
                    state=ChatState.PROMPT_PREMIUM,
                )
                return {"handled_by": "awaiting_confirmation", "place_bets": False}
            return {"handled_by": "awaiting_confirmation", "place_bets": True}

        if action == "no":
            self._reply(
                "Okay, no problem. Is there anything else I can help you with today?",
                options=FOLLOW_UP_OPTIONS,
                state=ChatState.IDLE_AFTER_NO,
                clear_amount=True,
            )
        else:
            self._reply("Please answer with 'Yes' or 'No'.", options=CONFIRM_OPTIONS)
        return {"handled_by": "awaiting_confirmation", "place_bets": False}

    def _commit_bets(self, amount: float, bets: List[Bet]) -> float:
        new_balance = self.wallet.debit(amount)
        try:
            self.bet_book.append_many(bets)
        except Exception:
            # Undo the debit so balance and bet list stay consistent
            self.wallet.credit(amount)
            raise
        return new_balance

    async def _place_bets(self, turn: TurnState):
        self._transition(ChatState.PROCESSING_BET)
        strategy_message = self.conversation.last_strategy_message()
        amount = self.conversation.pending_bet_amount
        if strategy_message is None or amount is None:
            logging.error("Cannot place bets: no strategy or bet amount in the conversation.")
            self._reply(
                "Sorry, there was an issue processing your bet. Could not retrieve strategy details or bet amount. "
                "Please try stating your bet amount again.",
                state=ChatState.AWAITING_AMOUNT,
                clear_amount=True,
            )
            return {"handled_by": "place_bets"}

        placed_date = datetime.now().strftime("%d/%m/%Y")
        bets = [Bet.from_suggestion(s, placed_date) for s in strategy_message.strategy.suggested_bets]
        try:
            await asyncio.sleep(self.settlement_delay)
            if self._is_stale(turn):
                return {"handled_by": "place_bets"}
            new_balance = self._commit_bets(amount, bets)
        except asyncio.CancelledError:
            if turn["generation"] == self._generation:
                self._reply(
                    "Bet placement was interrupted. No bets were placed.",
                    state=ChatState.AWAITING_AMOUNT,
                    clear_amount=True,
                )
            raise
        except (ChatBetError, ValueError, TypeError) as e:
            logging.error(f"Error during bet placement: {e}")
            self._reply(
                "An unexpected error occurred while placing your bets. Please try again.",
                state=ChatState.AWAITING_AMOUNT,
                clear_amount=True,
            )
            return {"handled_by": "place_bets"}

        logging.info(f"Placed {len(bets)} bets for a total of {amount:.2f}.")
        self._reply(
            f"Bets placed for a total of {amount:.2f}€! Your new balance is {new_balance:.2f}€. Good luck! What's next?",
            options=FOLLOW_UP_OPTIONS,
            state=ChatState.IDLE_AFTER_NO,
            clear_amount=True,
        )
        return {"handled_by": "place_bets"}

    async def _handle_premium_prompt(self, turn: TurnState):
        if normalize_action(turn["action"]) == "profile":
            self._reply("Great! Taking you to your profile now.", state=ChatState.IDLE_AFTER_NO)
            return {"handled_by": "prompt_premium", "navigate_to": "profile"}
        self._reply(
            "Alright. Let me know if you change your mind or need help with something else!",
            options=FOLLOW_UP_OPTIONS,
            state=ChatState.IDLE_AFTER_NO,
        )
        return {"handled_by": "prompt_premium"}

    async def _handle_idle(self, turn: TurnState):
        action = normalize_action(turn["action"])
        if action == "new_bet" and self.user is not None:
            try:
                welcome = await self.greeting_provider.welcome(self.user.name, self.wallet.balance())
            except ProviderError as e:
                if self._is_stale(turn):
                    return {"handled_by": "idle_after_no"}
                logging.error(f"Error starting new bet: {e}")
                self._reply("I had trouble starting a new bet. Please try asking for a 'new bet' again.")
                return {"handled_by": "idle_after_no"}
            if self._is_stale(turn):
                return {"handled_by": "idle_after_no"}
            self._reply(welcome.initial_question, options=QUICK_AMOUNT_OPTIONS, state=ChatState.AWAITING_AMOUNT)
        elif action == "end_chat":
            self._reply("Thanks for using BetMaestro! Have a great day. Feel free to ask if anything else comes up.")
        else:
            self._reply(
                "Sorry, I didn't quite get that. Please choose an option or type 'new bet'.",
                options=FOLLOW_UP_OPTIONS,
            )
        return {"handled_by": "idle_after_no"}

    async def _handle_balance_error(self, turn: TurnState):
        if parse_bet_amount(turn["action"]) is not None:
            self._transition(ChatState.AWAITING_AMOUNT)
            return {"handled_by": "error_balance", "retry": True}
        self._reply(
            "Please enter a valid positive number for your bet amount or choose an option.",
            options=QUICK_AMOUNT_OPTIONS,
        )
        return {"handled_by": "error_balance", "retry": False}

    async def _handle_unknown_state(self, turn: TurnState):
        if self.user is not None:
            logging.warning(f"No handler for state {self.conversation.state.value}. Restarting the amount prompt.")
            self._reply(
                "I'm not sure how to handle that. Let's try starting over. How much would you like to bet?",
                options=QUICK_AMOUNT_OPTIONS,
                state=ChatState.AWAITING_AMOUNT,
            )
        else:
            self._reply("Sorry, something went wrong. Please try refreshing the page.", state=ChatState.ERROR_GENERIC)
        return {"handled_by": "fallback"}
