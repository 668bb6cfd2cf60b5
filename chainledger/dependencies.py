"""Singleton instances and settings shared across routers, services and scripts."""

import os

from dotenv import load_dotenv

from chainledger.database.db_manager import DatabaseManager

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


db = DatabaseManager(db_url=os.getenv("DATABASE_URL"))

# Worker-pool size for per-(symbol, family) lot matching; 1 runs inline
CHAIN_MATCH_WORKERS = max(1, int(os.getenv("CHAIN_MATCH_WORKERS", "4")))

# Close option lots whose expiration has passed without a ledger row
AUTO_EXPIRE_OPTIONS = _env_flag("CHAIN_AUTO_EXPIRE_OPTIONS", "true")

PORT = int(os.getenv("PORT", "8000"))
