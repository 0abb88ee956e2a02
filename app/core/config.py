import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Models ---
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")

# --- Persistence ---
# Empty value keeps everything in memory (lost on restart).
CHAT_STORE_PATH = os.getenv("CHAT_STORE_PATH", "chat_sessions.json")

# --- Betting ---
SETTLEMENT_DELAY_SECONDS = float(os.getenv("SETTLEMENT_DELAY_SECONDS", "1.5"))
INITIAL_BALANCE = float(os.getenv("INITIAL_BALANCE", "500"))
RECHARGE_AMOUNT = float(os.getenv("RECHARGE_AMOUNT", "100"))
QUICK_AMOUNTS = (50, 100, 200)

# --- Frontend ---
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
