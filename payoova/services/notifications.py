"""User notifications for wallet and transfer events.

Delivery (email, SMS, push) is owned by an external sender; this module only
defines what gets announced and how it is handed off.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class TransactionEvent:
    user_id: str
    transaction_id: str
    tx_hash: Optional[str]
    network: str
    direction: str
    status: str
    amount: str
    asset_symbol: str
    error_message: Optional[str] = None


@dataclass
class InvoiceEvent:
    user_id: str
    invoice_id: str
    network: str
    token: str
    amount: str
    tx_hash: str


@dataclass
class WalletEvent:
    user_id: str
    wallet_id: str
    network: str
    address: str


class Notifier(ABC):
    """Contract for announcing events to users."""

    @abstractmethod
    async def transaction_status_changed(self, event: TransactionEvent) -> None:
        ...

    @abstractmethod
    async def invoice_paid(self, event: InvoiceEvent) -> None:
        ...

    @abstractmethod
    async def wallet_created(self, event: WalletEvent) -> None:
        ...


class LoggingNotifier(Notifier):
    """Writes events to the log; used when no delivery channel is configured."""

    async def transaction_status_changed(self, event: TransactionEvent) -> None:
        logger.info(
            f"Notify user {event.user_id}: {event.direction} {event.amount} {event.asset_symbol} "
            f"on {event.network} is {event.status} ({event.tx_hash})"
        )

    async def invoice_paid(self, event: InvoiceEvent) -> None:
        logger.info(f"Notify user {event.user_id}: invoice {event.invoice_id} paid by {event.tx_hash}")

    async def wallet_created(self, event: WalletEvent) -> None:
        logger.info(f"Notify user {event.user_id}: {event.network} wallet {event.address} created")


class WebhookNotifier(Notifier):
    """POSTs events as JSON to the external notification sender.

    Delivery failures are logged and dropped; a notification never fails the
    operation that triggered it.
    """

    def __init__(self, url: str, timeout_seconds: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    async def _post(self, event_type: str, payload: Dict[str, Any]) -> None:
        try:
            response = await self._client.post(self.url, json={"type": event_type, "data": payload})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Notification {event_type} delivery failed: {e}")

    async def transaction_status_changed(self, event: TransactionEvent) -> None:
        await self._post("transaction.status_changed", asdict(event))

    async def invoice_paid(self, event: InvoiceEvent) -> None:
        await self._post("invoice.paid", asdict(event))

    async def wallet_created(self, event: WalletEvent) -> None:
        await self._post("wallet.created", asdict(event))

    async def aclose(self) -> None:
        await self._client.aclose()
