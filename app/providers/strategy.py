import asyncio
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Protocol

from app.core.errors import ProviderError
from app.core.models import Strategy, SuggestedBet

CENT = Decimal("0.01")


class StrategyProvider(Protocol):
    async def generate(self, wallet_balance: float, bet_amount: float) -> Strategy:
        ...


# Fixed fixture and lines used by the demo provider. Each entry is placed with
# a different house; `weight` is the share of the total stake.
DEMO_FIXTURE = {"game_date": "22/05/2025", "home_team": "New York Knicks", "away_team": "Indiana Pacers"}
DEMO_LINES = [
    {
        "house": "bet365", "odds": 1.85, "predicted_winner": "New York Knicks", "weight": Decimal("0.40"),
        "justification": "Knicks have shown strong home-court performance recently.",
    },
    {
        "house": "Betfair", "odds": 2.10, "predicted_winner": "New York Knicks", "weight": Decimal("0.35"),
        "justification": "Both teams score heavily; a Knicks win by more than 3.5 points pays better odds.",
    },
    {
        "house": "Betway", "odds": 1.90, "predicted_winner": "Indiana Pacers", "weight": Decimal("0.25"),
        "justification": "Pacers are strong underdogs and covering the +5.5 spread is a plausible outcome.",
    },
]


def split_stake(bet_amount: float, weights: List[Decimal]) -> List[Decimal]:
    """
    Splits a stake by weight, rounding every share but the last to cents.
    The last share takes the remainder so the shares add up to the stake.
    Returns an empty list when any share would be zero.
    """
    total = Decimal(str(bet_amount))
    shares = [(total * weight).quantize(CENT, rounding=ROUND_HALF_UP) for weight in weights[:-1]]
    shares.append(total - sum(shares, Decimal("0")))
    if any(share <= 0 for share in shares):
        return []
    return shares


class DemoStrategyProvider:
    """
    Deterministic strategy for a single fixture. Stands in for a real
    strategy model and only guarantees the provider contract.
    """
    def __init__(self, latency: float = 0.0):
        self.latency = latency

    async def generate(self, wallet_balance: float, bet_amount: float) -> Strategy:
        logging.info(f"--- Generating demo strategy for {bet_amount} EUR (balance {wallet_balance}) ---")
        if bet_amount is None or bet_amount <= 0:
            raise ProviderError(f"Cannot build a strategy for a bet amount of {bet_amount}.")
        if self.latency:
            await asyncio.sleep(self.latency)

        shares = split_stake(bet_amount, [line["weight"] for line in DEMO_LINES])
        suggested_bets = [
            SuggestedBet(
                **DEMO_FIXTURE,
                bet_amount=float(share),
                odds=line["odds"],
                house=line["house"],
                predicted_winner=line["predicted_winner"],
                justification=line["justification"],
            )
            for line, share in zip(DEMO_LINES, shares)
        ]
        if not suggested_bets:
            logging.warning(f"Bet amount {bet_amount} is too small to split across {len(DEMO_LINES)} houses.")

        matchup = f"{DEMO_FIXTURE['home_team']} vs {DEMO_FIXTURE['away_team']}"
        share_of_balance = (bet_amount / wallet_balance * 100) if wallet_balance else 100.0
        return Strategy(
            description=(
                f"This strategy spreads your stake across different outcomes and houses for the "
                f"{matchup} game on {DEMO_FIXTURE['game_date']}."
            ),
            suggested_bets=suggested_bets,
            risk_assessment=(
                f"You are staking {share_of_balance:.0f}% of your balance. "
                "All betting involves risk. Please bet responsibly."
            ),
        )
