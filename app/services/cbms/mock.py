"""
Mock CBMS Client

Accepts every valid payload without touching the network. Used in
development mode and in tests.

Behavior:
    - Returns 200 for new invoice numbers and 101 for repeats
    - ``failure_code`` forces every call to answer with that code
    - Keeps the payloads it received in ``sent`` for inspection
"""

import logging
from typing import Optional

from app.services.cbms.base import (
    BaseCbmsClient,
    CbmsResult,
    SUCCESS_CODES,
    response_message,
)

logger = logging.getLogger(__name__)


class MockCbmsClient(BaseCbmsClient):

    def __init__(self, failure_code: Optional[int] = None):
        self.failure_code = failure_code
        self.sent: list[dict] = []
        self._seen: set[tuple[str, str]] = set()
        logger.info("MockCbmsClient initialized")

    @property
    def provider_name(self) -> str:
        return "mock"

    def _answer(self, key: tuple[str, str], payload: dict) -> CbmsResult:
        self.sent.append(payload)
        if self.failure_code is not None:
            code = self.failure_code
        elif key in self._seen:
            code = 101
        else:
            code = 200
        self._seen.add(key)
        logger.debug(f"Mock CBMS: {key[1]} → {code}")
        return CbmsResult(
            success=code in SUCCESS_CODES,
            code=code,
            message=response_message(code),
            response={"code": code, "mock": True},
        )

    async def post_bill(self, api_url: str, payload: dict) -> CbmsResult:
        return self._answer(("bill", payload["invoice_number"]), payload)

    async def post_bill_return(self, api_url: str, payload: dict) -> CbmsResult:
        return self._answer(("billreturn", payload["credit_note_number"]), payload)

    async def health_check(self) -> bool:
        return True
