"""Payment request (invoice) API endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payoova.database import get_db
from payoova.exceptions import UnsupportedNetworkError, ValidationFailedError
from payoova.models.invoice import InvoiceStatus
from payoova.models.user import User
from payoova.schemas.common import CorrelatedResponse, PaginatedResponse
from payoova.schemas.payment import InvoiceCreate, InvoiceResponse, PaymentLinkResponse
from payoova.services.chain import ChainRegistry
from payoova.services.networks import parse_network
from payoova.services.payments import InvoiceService
from payoova.services.wallet import WalletService
from payoova.api.deps import (
    get_chains,
    get_correlation_id,
    get_current_user,
    get_invoice_service,
    get_wallet_service,
)

router = APIRouter(prefix="/v1/payments", tags=["Payments"])


@router.post("/create", response_model=CorrelatedResponse[PaymentLinkResponse])
async def create_payment(
    request: InvoiceCreate,
    db: AsyncSession = Depends(get_db),
    invoices: InvoiceService = Depends(get_invoice_service),
    wallet_service: WalletService = Depends(get_wallet_service),
    chains: ChainRegistry = Depends(get_chains),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """
    Create a payment request to the caller's wallet on ``chain``.

    Returns a pay URL and its QR code; the monitor marks the invoice paid
    when a matching transfer lands.
    """
    network = parse_network(request.chain)
    if network not in chains:
        raise UnsupportedNetworkError(f"Network {network.value} is not enabled")

    wallet, _ = await wallet_service.generate_wallet(current_user.id, network)
    link = await invoices.create_invoice(
        current_user.id,
        wallet,
        network.value,
        request.token,
        request.amount,
        memo=request.memo,
        expires_in_minutes=request.expires_in_minutes,
    )
    await db.commit()

    invoice = link.invoice
    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=PaymentLinkResponse(
            invoice_id=invoice.id,
            pay_url=link.pay_url,
            qr_png_base64=link.qr_png_base64,
            address=invoice.address,
            network=invoice.network,
            token=invoice.token,
            amount=invoice.amount,
            expires_at=invoice.expires_at,
        )
    )


@router.get("", response_model=PaginatedResponse[InvoiceResponse])
async def list_payments(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    invoices: InvoiceService = Depends(get_invoice_service),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """The caller's invoices, newest first."""
    status_filter = None
    if status:
        try:
            status_filter = InvoiceStatus(status.lower())
        except ValueError:
            raise ValidationFailedError(f"Invalid status {status!r}")

    items, total = await invoices.list_for_user(current_user.id, status_filter, limit, offset)
    return PaginatedResponse(
        correlation_id=correlation_id,
        items=[InvoiceResponse.model_validate(i) for i in items],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(items) < total,
    )


@router.get("/{invoice_id}", response_model=CorrelatedResponse[InvoiceResponse])
async def get_payment(
    invoice_id: str,
    db: AsyncSession = Depends(get_db),
    invoices: InvoiceService = Depends(get_invoice_service),
    correlation_id: str = Depends(get_correlation_id),
):
    """Public invoice status for the payer. Overdue pending invoices expire on read."""
    invoice = await invoices.get_status(invoice_id)
    await db.commit()
    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=InvoiceResponse.model_validate(invoice)
    )


@router.post("/{invoice_id}/cancel", response_model=CorrelatedResponse[InvoiceResponse])
async def cancel_payment(
    invoice_id: str,
    db: AsyncSession = Depends(get_db),
    invoices: InvoiceService = Depends(get_invoice_service),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """Cancel a pending invoice."""
    invoice = await invoices.cancel(invoice_id, current_user.id)
    await db.commit()
    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=InvoiceResponse.model_validate(invoice)
    )
