import logging
from typing import List, Optional, Union

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from app.core.config import configure_logging
from app.core.errors import InputValidationError, ProviderError, SessionNotFound
from app.core.models import Bet, ChatState, Message, MessageOption, Plan, User
from app.services import session_manager as session_module

app = FastAPI(title="BetMaestro API", version="1.0.0")


def get_manager():
    return session_module.session_manager


@app.on_event("startup")
def on_startup():
    configure_logging()
    logging.info("Application startup...")


# --- Pydantic Models ---
class SessionRequest(BaseModel):
    session_id: str


class LoginRequest(SessionRequest):
    preview: bool = False


class ChatRequest(SessionRequest):
    user_input: Union[MessageOption, str]


class RechargeRequest(SessionRequest):
    amount: Optional[float] = None


class PlanRequest(SessionRequest):
    plan: Plan


class ChatResponse(BaseModel):
    session_id: str
    state: ChatState
    messages: List[Message]
    new_messages: List[Message] = []
    navigate_to: Optional[str] = None
    input_enabled: bool
    input_hint: str
    balance: float


class ProfileResponse(BaseModel):
    session_id: str
    user: User
    balance: float


class WalletResponse(BaseModel):
    session_id: str
    balance: float


class HealthStatus(BaseModel):
    status: str
    active_sessions: int


def _session_or_401(session_id: str):
    try:
        return get_manager().get_session(session_id)
    except SessionNotFound as e:
        raise HTTPException(status_code=401, detail=str(e))


def _chat_response(session, result=None) -> ChatResponse:
    controller = session.controller
    return ChatResponse(
        session_id=session.session_id,
        state=controller.conversation.state,
        messages=[m for m in controller.conversation.messages if not m.is_loading],
        new_messages=result.messages if result else [],
        navigate_to=result.navigate_to if result else None,
        input_enabled=controller.accepts_input(),
        input_hint=controller.input_hint(),
        balance=session.wallet.balance(),
    )


@app.get("/health/status", response_model=HealthStatus)
def get_health_status():
    return {"status": "ok", "active_sessions": get_manager().active_sessions()}


@app.get("/")
def read_root():
    return {"status": "ok", "message": "Welcome to BetMaestro API!"}


@app.post("/login", response_model=ProfileResponse)
def login(request: LoginRequest):
    session = get_manager().login(request.session_id, preview=request.preview)
    return {"session_id": session.session_id, "user": session.user, "balance": session.wallet.balance()}


@app.post("/logout")
def logout(request: SessionRequest):
    get_manager().logout(request.session_id)
    return {"status": "ok"}


@app.post("/chat/start", response_model=ChatResponse)
async def start_chat(request: SessionRequest):
    """Greets the user on the first visit; later calls just return the conversation."""
    session = _session_or_401(request.session_id)
    async with session.lock:
        result = await session.controller.start(session.user, session.wallet.balance())
    return _chat_response(session, result)


@app.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest):
    """Main endpoint to interact with the chatbot."""
    session = _session_or_401(request.session_id)
    if session.lock.locked():
        raise HTTPException(status_code=409, detail="Still working on your previous message.")
    async with session.lock:
        result = await session.controller.submit(request.user_input)
    return _chat_response(session, result)


@app.get("/chat/{session_id}", response_model=ChatResponse)
def get_chat(session_id: str):
    return _chat_response(_session_or_401(session_id))


@app.get("/wallet/{session_id}", response_model=WalletResponse)
def get_wallet(session_id: str):
    session = _session_or_401(session_id)
    return {"session_id": session_id, "balance": session.wallet.balance()}


@app.post("/wallet/recharge", response_model=WalletResponse)
def recharge_wallet(request: RechargeRequest):
    _session_or_401(request.session_id)
    manager = get_manager()
    try:
        if request.amount is None:
            balance = manager.recharge(request.session_id)
        else:
            balance = manager.recharge(request.session_id, request.amount)
    except InputValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"session_id": request.session_id, "balance": balance}


@app.post("/profile/plan", response_model=ProfileResponse)
def set_plan(request: PlanRequest):
    session = _session_or_401(request.session_id)
    user = get_manager().set_plan(request.session_id, request.plan)
    return {"session_id": request.session_id, "user": user, "balance": session.wallet.balance()}


@app.get("/bets/{session_id}", response_model=List[Bet])
def get_bets(session_id: str):
    return _session_or_401(session_id).bet_book.all()


@app.get("/bets/{session_id}/summary")
async def get_bets_summary(session_id: str):
    _session_or_401(session_id)
    try:
        summary = await get_manager().summarize_bets(session_id)
    except ProviderError as e:
        logging.error(f"Bet summary failed for session '{session_id}': {e}")
        raise HTTPException(status_code=503, detail="Could not summarize your bets right now. Please try again later.")
    return {"session_id": session_id, "summary": summary}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
