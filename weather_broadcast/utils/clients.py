"""API clients initialization"""

import os
from typing import Optional

from openai import OpenAI
from dotenv import load_dotenv

from ..exceptions import ConfigurationError
from .logging import get_logger

load_dotenv()
logger = get_logger(__name__)

_openai_client: Optional[OpenAI] = None


def get_openai_client() -> OpenAI:
    """Shared OpenAI client, created on first use so imports never need a key"""
    global _openai_client
    if _openai_client is None:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set")
        _openai_client = OpenAI(
            api_key=api_key,
            timeout=300.0,
            max_retries=2,
        )
        logger.info("OpenAI client initialized")
    return _openai_client


def is_dry_run() -> bool:
    """DRY_RUN=true replaces paid API calls with placeholders"""
    return os.getenv('DRY_RUN', '').lower() == 'true'
