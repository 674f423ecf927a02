"""
chain.py - Process-wide chain provider built from settings.
"""

import logging
from functools import lru_cache

from ticket_ledger.chain.provider import ChainProvider
from ticket_ledger.config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_chain_provider() -> ChainProvider:
    provider = ChainProvider(
        settings.PROVIDER_URL,
        timeout=settings.PROVIDER_TIMEOUT,
        max_retries=settings.PROVIDER_MAX_RETRIES,
        backoff_min=settings.PROVIDER_BACKOFF_MIN,
        backoff_max=settings.PROVIDER_BACKOFF_MAX,
    )
    logger.info("Chain provider configured for %s", settings.PROVIDER_URL)
    return provider
