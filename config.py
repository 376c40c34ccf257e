"""Runtime configuration for the options analytics backend, read from the environment."""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

RISK_FREE_RATE = float(os.getenv("RISK_FREE_RATE", "0.05"))
DIVIDEND_YIELD = float(os.getenv("DIVIDEND_YIELD", "0.02"))
DEFAULT_VOLATILITY = float(os.getenv("DEFAULT_VOLATILITY", "0.2"))

# Sentiment feed (optional). Without a URL no HTTP source is registered.
SENTIMENT_API_URL = os.getenv("SENTIMENT_API_URL")
SENTIMENT_API_TIMEOUT = float(os.getenv("SENTIMENT_API_TIMEOUT", "10"))

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
PORT = int(os.getenv("PORT", 8000))
