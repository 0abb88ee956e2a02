import logging
from typing import Protocol

from langchain_core.prompts import ChatPromptTemplate
from langchain_google_genai import ChatGoogleGenerativeAI

from app.core import config
from app.core.errors import ProviderError
from app.core.models import WelcomeMessage
from app.prompts.system_prompts import WELCOME_PROMPT


class GreetingProvider(Protocol):
    async def welcome(self, user_name: str, wallet_balance: float) -> WelcomeMessage:
        ...


def default_welcome(user_name: str) -> WelcomeMessage:
    return WelcomeMessage(
        welcome_message=f"Welcome, {user_name}! I'm ready to assist.",
        initial_question="How much would you like to bet today?",
    )


class StaticGreetingProvider:
    """Greets without calling a model. Used when no API key is configured."""
    async def welcome(self, user_name: str, wallet_balance: float) -> WelcomeMessage:
        return default_welcome(user_name)


class GeminiGreetingProvider:
    def __init__(self, model_name: str = config.GEMINI_MODEL):
        model = ChatGoogleGenerativeAI(model=model_name, temperature=0.7)
        prompt = ChatPromptTemplate.from_template(WELCOME_PROMPT)
        self.chain = prompt | model.with_structured_output(WelcomeMessage)

    async def welcome(self, user_name: str, wallet_balance: float) -> WelcomeMessage:
        logging.info(f"--- Generating welcome message for '{user_name}' ---")
        try:
            output = await self.chain.ainvoke({"user_name": user_name, "wallet_balance": wallet_balance})
        except Exception as e:
            logging.error(f"Welcome message generation failed for '{user_name}': {e}")
            raise ProviderError("Could not generate a welcome message.", cause=e) from e

        if output is None:
            # The model answered but without the structured fields
            logging.error(f"Welcome message flow returned no structured output for '{user_name}'.")
            return default_welcome(user_name)
        return output


def build_greeting_provider() -> GreetingProvider:
    if config.GOOGLE_API_KEY:
        return GeminiGreetingProvider()
    logging.info("GOOGLE_API_KEY not set. Using the static greeting provider.")
    return StaticGreetingProvider()
