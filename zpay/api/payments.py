"""
Proxy routes to the payment automation API.

Responses are relayed with the upstream status code, body and headers so
the dashboard's live demo sees exactly what the service returned. The
upstream reason phrase travels in ``X-Upstream-Reason``.
"""
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.database.connection import get_db
from zpay.database.models import User
from zpay.integrations.payment_api import ExternalResponse, PaymentApiClient

from .deps import get_current_user, get_payment_api_client
from .schemas import CreateInvoiceRequest

payments_router = APIRouter(prefix="/payments", tags=["payments"])

UPSTREAM_REASON_HEADER = "X-Upstream-Reason"

# Connection-level or re-computed when the body is re-encoded.
NON_RELAYED_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "content-length",
        "content-encoding",
        "set-cookie",
    }
)


def relayed_headers(upstream: ExternalResponse) -> Dict[str, str]:
    headers = {
        name: value
        for name, value in upstream.headers.items()
        if name.lower() not in NON_RELAYED_HEADERS
    }
    if upstream.reason:
        headers[UPSTREAM_REASON_HEADER] = upstream.reason
    return headers


def relay(upstream: ExternalResponse) -> Response:
    response_class = PlainTextResponse if isinstance(upstream.body, str) else JSONResponse
    return response_class(
        upstream.body, status_code=upstream.status_code, headers=relayed_headers(upstream)
    )


async def get_payment_caller(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Authenticate, then end the request's transaction.

    Upstream calls (and the address poll in particular) can take minutes;
    the pooled connection is returned before they start.
    """
    await db.commit()
    return user


@payments_router.post("/create-invoice", summary="Create an invoice upstream")
async def create_invoice(
    request: CreateInvoiceRequest,
    user: User = Depends(get_payment_caller),
    client: PaymentApiClient = Depends(get_payment_api_client),
) -> Response:
    upstream = await client.create_invoice(
        request.api_key, request.user_id, request.invoice_id, request.amount
    )
    return relay(upstream)


@payments_router.get("/address-status", summary="Payment status of an address or invoice")
async def address_status(
    api_key: str = Query(..., min_length=1),
    address: Optional[str] = None,
    invoice_id: Optional[str] = None,
    user_id: Optional[str] = None,
    wait: bool = Query(default=False, description="Poll until the payment settles"),
    user: User = Depends(get_payment_caller),
    client: PaymentApiClient = Depends(get_payment_api_client),
) -> Response:
    if wait:
        upstream = await client.poll_address_status(
            api_key,
            is_payment_settled,
            address=address,
            invoice_id=invoice_id,
            user_id=user_id,
        )
    else:
        upstream = await client.get_address_status(
            api_key, address=address, invoice_id=invoice_id, user_id=user_id
        )
    return relay(upstream)


@payments_router.get("/shared-log", summary="Processing log for an invoice")
async def shared_log(
    api_key: str = Query(..., min_length=1),
    user_id: Optional[str] = None,
    invoice_id: Optional[str] = None,
    user: User = Depends(get_payment_caller),
    client: PaymentApiClient = Depends(get_payment_api_client),
) -> Response:
    upstream = await client.get_shared_log(api_key, user_id=user_id, invoice_id=invoice_id)
    return relay(upstream)


def is_payment_settled(response: ExternalResponse) -> bool:
    """
    Terminal condition for the address poll.

    Stops on any non-2xx answer, or once the reported status is no longer
    pending/processing.
    """
    if not response.ok:
        return True
    if not isinstance(response.body, dict):
        return False
    state = str(response.body.get("status", "")).upper()
    return state not in ("", "PENDING", "PROCESSING")
