"""
CBMS Client Factory

    from app.services.cbms import get_cbms_client

    client = get_cbms_client()   # MockCbmsClient in development, IrdCbmsClient otherwise
    result = await client.post_bill(api_url, payload)
"""

import logging
from functools import lru_cache

from app.core.config import get_settings
from app.services.cbms.base import (
    BaseCbmsClient,
    CbmsCredentials,
    CbmsResult,
    build_sale_payload,
    build_return_payload,
    validate_payload,
    response_message,
)
from app.services.cbms.mock import MockCbmsClient
from app.services.cbms.real import IrdCbmsClient

logger = logging.getLogger(__name__)


@lru_cache()
def get_cbms_client() -> BaseCbmsClient:
    settings = get_settings()

    if settings.is_development:
        logger.info("CBMS Client: Using MockCbmsClient (development mode)")
        return MockCbmsClient()

    logger.info(f"CBMS Client: Using IrdCbmsClient ({settings.env_mode.value} mode)")
    return IrdCbmsClient()


def reset_cbms_client() -> None:
    get_cbms_client.cache_clear()
    logger.debug("CBMS client cache cleared")


__all__ = [
    "get_cbms_client",
    "reset_cbms_client",
    "BaseCbmsClient",
    "CbmsCredentials",
    "CbmsResult",
    "MockCbmsClient",
    "IrdCbmsClient",
    "build_sale_payload",
    "build_return_payload",
    "validate_payload",
    "response_message",
]
