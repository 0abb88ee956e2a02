import logging
from typing import List, Protocol

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_google_genai import ChatGoogleGenerativeAI

from app.core import config
from app.core.errors import ProviderError
from app.core.models import Bet, BetResult
from app.prompts.system_prompts import BET_SUMMARY_PROMPT


class BetSummaryProvider(Protocol):
    async def summarize(self, bets: List[Bet]) -> str:
        ...


def format_betting_history(bets: List[Bet]) -> str:
    lines = []
    for bet in bets:
        line = (
            f"- {bet.game_date}: {bet.home_team} vs {bet.away_team}, {bet.bet_amount:.2f} EUR on "
            f"{bet.predicted_winner} at {bet.odds} with {bet.house} -> {bet.result.value}"
        )
        if bet.gain is not None:
            line += f" (gain {bet.gain:.2f} EUR)"
        lines.append(line)
    return "\n".join(lines)


class StatsBetSummaryProvider:
    """Summarizes the history with plain counts and totals."""
    async def summarize(self, bets: List[Bet]) -> str:
        if not bets:
            return "You haven't placed any bets yet."
        won = [b for b in bets if b.result == BetResult.WON]
        lost = [b for b in bets if b.result == BetResult.LOST]
        pending = len(bets) - len(won) - len(lost)
        staked = sum(b.bet_amount for b in bets)
        net = sum(b.gain or 0.0 for b in won) - sum(b.bet_amount for b in lost)

        summary = [f"You have placed {len(bets)} bets for a total of {staked:.2f}€."]
        settled = len(won) + len(lost)
        if settled:
            summary.append(
                f"{len(won)} won and {len(lost)} lost ({len(won) / settled:.0%} win rate), "
                f"for a net result of {net:+.2f}€."
            )
        if pending:
            summary.append(f"{pending} still pending.")
        return " ".join(summary)


class GeminiBetSummaryProvider:
    def __init__(self, model_name: str = config.GEMINI_MODEL):
        model = ChatGoogleGenerativeAI(model=model_name, temperature=0)
        self.chain = ChatPromptTemplate.from_template(BET_SUMMARY_PROMPT) | model | StrOutputParser()

    async def summarize(self, bets: List[Bet]) -> str:
        if not bets:
            return "You haven't placed any bets yet."
        logging.info(f"--- Summarizing {len(bets)} past bets ---")
        try:
            return await self.chain.ainvoke({"betting_history": format_betting_history(bets)})
        except Exception as e:
            logging.error(f"Bet history summary failed: {e}")
            raise ProviderError("Could not summarize the betting history.", cause=e) from e


def build_bet_summary_provider() -> BetSummaryProvider:
    if config.GOOGLE_API_KEY:
        return GeminiBetSummaryProvider()
    return StatsBetSummaryProvider()
