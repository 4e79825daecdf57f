"""
Acquisition adapters.

Both ways of getting transactions out of the bank live in the banking-sync
runner, an external service: the FinTS protocol client and the browser
automation fallback (which owns its own second-factor wait). This core talks
to the runner over HTTP and only sees normalized transactions.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError as PydanticValidationError

from app.core.config import config
from app.core.exceptions import AcquisitionError, ValidationError
from app.modules.transactions.dto import NormalizedTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncWindow:
    start: datetime
    end: datetime

    def to_payload(self) -> Dict[str, str]:
        return {"from": self.start.date().isoformat(), "to": self.end.date().isoformat()}


@dataclass(frozen=True)
class BankCredentials:
    bank_code: str
    login_id: str
    secret: str
    endpoint_url: str
    account_number: str

    def __repr__(self) -> str:
        return f"BankCredentials(bank_code='{self.bank_code}', account='{self.account_number}')"


@runtime_checkable
class AcquisitionAdapter(Protocol):
    """Anything that can deliver the incoming transactions of a window."""

    method: str

    async def fetch(
        self, window: SyncWindow, credentials: BankCredentials
    ) -> List[NormalizedTransaction]:
        ...


class SyncRunnerAdapter:
    """HTTP client for the banking-sync runner with retry on transient failures."""

    method = "protocol"
    path = "/v1/fints/transactions"

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: int = 2,
    ):
        self.base_url = (base_url or config.sync_runner_url).rstrip("/")
        self.token = token if token is not None else config.sync_runner_token
        self.timeout = timeout or config.sync_runner_timeout_seconds
        self.max_retries = max_retries

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["X-Sync-Token"] = self.token
        return headers

    def _payload(self, window: SyncWindow, credentials: BankCredentials) -> Dict[str, Any]:
        return {
            "window": window.to_payload(),
            "bank": {
                "bank_code": credentials.bank_code,
                "endpoint_url": credentials.endpoint_url,
                "account_number": credentials.account_number,
            },
            "login": {"login_id": credentials.login_id, "secret": credentials.secret},
        }

    async def fetch(
        self, window: SyncWindow, credentials: BankCredentials
    ) -> List[NormalizedTransaction]:
        if not self.base_url:
            raise AcquisitionError("SYNC_RUNNER_URL is not configured")

        data = await self._post_with_retry(self._payload(window, credentials))
        if data.get("status") == "error":
            raise AcquisitionError(data.get("error") or "sync runner reported an error")

        items = data.get("transactions")
        if not isinstance(items, list):
            raise AcquisitionError("sync runner response has no transaction list")

        transactions: List[NormalizedTransaction] = []
        for index, item in enumerate(items):
            try:
                transactions.append(NormalizedTransaction.model_validate(item))
            except PydanticValidationError as e:
                logger.warning(f"Dropping malformed transaction #{index} from sync runner: {e.errors()}")
        logger.info(
            f"{self.method} acquisition returned {len(transactions)} transaction(s) "
            f"for {window.start.date()}..{window.end.date()}"
        )
        return transactions

    async def _post_with_retry(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{self.path}"
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=self._headers())

                if response.status_code == 200:
                    return response.json()

                error_msg = f"HTTP {response.status_code}: {response.text[:500]}"
                # Auth and request errors will not get better by retrying
                if 400 <= response.status_code < 500:
                    raise AcquisitionError(f"sync runner rejected the request ({error_msg})")
                last_exception = AcquisitionError(error_msg)
                logger.warning(
                    f"Sync runner error (attempt {attempt + 1}/{self.max_retries + 1}): {error_msg}"
                )

            except httpx.TimeoutException as e:
                last_exception = e
                logger.warning(f"Sync runner timeout (attempt {attempt + 1}/{self.max_retries + 1})")
            except httpx.RequestError as e:
                last_exception = e
                logger.error(f"Network error talking to sync runner: {str(e)}")
            except ValueError as e:
                raise AcquisitionError(f"invalid JSON from sync runner: {str(e)}")

            if attempt < self.max_retries:
                await asyncio.sleep(min(2 ** attempt, 10))

        raise AcquisitionError(
            f"sync runner unreachable after {self.max_retries + 1} attempt(s): {last_exception}"
        )


class ProtocolClientAdapter(SyncRunnerAdapter):
    """FinTS/HBCI protocol client."""

    method = "protocol"
    path = "/v1/fints/transactions"


class BrowserAutomationAdapter(SyncRunnerAdapter):
    """Online-banking browser automation; may block on a pending second factor."""

    method = "browser"
    path = "/v1/browser/transactions"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Leave room for the human approving the second factor
        self.timeout = max(self.timeout, 600.0)
        self.max_retries = 0


ADAPTERS = {
    ProtocolClientAdapter.method: ProtocolClientAdapter,
    BrowserAutomationAdapter.method: BrowserAutomationAdapter,
}


def build_acquisition_adapter(method: Optional[str] = None) -> AcquisitionAdapter:
    method = (method or config.acquisition_method).lower()
    adapter_cls = ADAPTERS.get(method)
    if adapter_cls is None:
        raise ValidationError(
            f"Unknown acquisition method '{method}', expected one of {', '.join(sorted(ADAPTERS))}"
        )
    return adapter_cls()
