"""
Central configuration for FieldLedger.
Loads from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base directory (project root)
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'field_ledger.db'}")

# Web dashboard
WEB_HOST = os.getenv("WEB_HOST", "127.0.0.1")
WEB_PORT = int(os.getenv("WEB_PORT", "8080"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = BASE_DIR / "logs"

# Loan cost heuristics
# SIMPLE-mode records only carry an annual payment; split it interest/principal.
SIMPLE_INTEREST_SHARE = float(os.getenv("SIMPLE_INTEREST_SHARE", "0.4"))
SIMPLE_PRINCIPAL_SHARE = 1.0 - SIMPLE_INTEREST_SHARE

# Projection
SCENARIO_LIMIT_PCT = float(os.getenv("SCENARIO_LIMIT_PCT", "50"))
PROJECTION_WORKERS = int(os.getenv("PROJECTION_WORKERS", "3"))

# Fallback cash prices ($/bu) used when the price feed is unavailable
DEFAULT_PRICES = {
    "corn": float(os.getenv("DEFAULT_PRICE_CORN", "4.66")),
    "soybeans": float(os.getenv("DEFAULT_PRICE_SOYBEANS", "11.20")),
    "wheat": float(os.getenv("DEFAULT_PRICE_WHEAT", "5.50")),
}

# Ensure directories exist
for d in [DATA_DIR, LOG_DIR]:
    d.mkdir(parents=True, exist_ok=True)
