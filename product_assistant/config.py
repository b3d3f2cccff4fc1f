"""
Configuration for the Product Assistant.

Values are read from the environment (a local .env file is loaded first)
and exposed as module constants. Components take explicit overrides in
their constructors and fall back to these.
"""

import logging
import os
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# OpenAI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o")
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.7"))
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_BATCH_SIZE = int(os.getenv("EMBEDDING_BATCH_SIZE", "50"))
EMBEDDING_BATCH_DELAY = float(os.getenv("EMBEDDING_BATCH_DELAY", "0.2"))

# Storage
VECTOR_STORE_PATH = os.getenv("VECTOR_STORE_PATH", "./vector_store")
CATALOG_PATH = os.getenv("CATALOG_PATH", "./data/catalog.json")
SESSIONS_DB_PATH = os.getenv("SESSIONS_DB_PATH", "./db/sessions.db")

# Orchestration
MAX_TOOL_ROUNDS = int(os.getenv("MAX_TOOL_ROUNDS", "8"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
OPENAI_LOG_LEVEL = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

# HTTP
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]


def require_api_key(api_key: Optional[str]) -> str:
    """Return the API key or raise if none is configured."""
    key = api_key or OPENAI_API_KEY
    if not key:
        raise ValueError("OPENAI_API_KEY environment variable is required")
    return key


def setup_logging() -> None:
    """
    Configure process-wide logging once at startup.

    Level comes from LOG_LEVEL; the OpenAI SDK and its HTTP transport are
    held at OPENAI_LOG_LEVEL so request bodies don't flood the output.
    """
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    for name in ("openai", "httpx"):
        logging.getLogger(name).setLevel(
            getattr(logging, OPENAI_LOG_LEVEL, logging.WARNING)
        )
