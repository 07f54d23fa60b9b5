"""
IRD CBMS HTTP Client

Posts invoices and returns to the CBMS API with httpx. Used when
ENV_MODE is staging or production.

IRD answers with a JSON body carrying ``code``; when the body has no
code the HTTP status is used instead. Network failures come back as
code 0 so the caller can retry later.
"""

import logging
from typing import Optional

import httpx

from app.core.config import get_settings
from app.services.cbms.base import (
    BaseCbmsClient,
    CbmsResult,
    SUCCESS_CODES,
    response_message,
)

logger = logging.getLogger(__name__)


class IrdCbmsClient(BaseCbmsClient):
    """
    Real CBMS client.

    Example:
        >>> client = IrdCbmsClient()
        >>> result = await client.post_bill("https://cbapi.ird.gov.np", payload)
        >>> result.success
        True
    """

    def __init__(self, timeout: Optional[float] = None):
        settings = get_settings()
        self.timeout = timeout or settings.cbms_timeout_seconds
        self.default_url = settings.cbms_api_url
        logger.info(f"IrdCbmsClient initialized (timeout={self.timeout}s)")

    @property
    def provider_name(self) -> str:
        return "ird"

    async def _post(self, url: str, payload: dict) -> CbmsResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Accept": "application/json"},
                )
            try:
                body = response.json()
            except ValueError:
                body = {}
            code = int(body.get("code") or response.status_code) if isinstance(body, dict) else response.status_code

            result = CbmsResult(
                success=code in SUCCESS_CODES,
                code=code,
                message=response_message(code),
                response=body if isinstance(body, dict) else {"body": body},
            )
            if result.success:
                logger.info(f"CBMS: {url} → {code}")
            else:
                logger.warning(f"CBMS: {url} rejected with {code} ({result.message})")
            return result

        except httpx.HTTPError as e:
            logger.error(f"CBMS: Network error posting to {url} - {e}")
            return CbmsResult(success=False, code=0, message=f"Network error: {e}")

    async def post_bill(self, api_url: str, payload: dict) -> CbmsResult:
        return await self._post(f"{(api_url or self.default_url).rstrip('/')}/api/bill", payload)

    async def post_bill_return(self, api_url: str, payload: dict) -> CbmsResult:
        return await self._post(f"{(api_url or self.default_url).rstrip('/')}/api/billreturn", payload)

    async def health_check(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(self.default_url)
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.error(f"CBMS: Health check failed - {e}")
            return False
