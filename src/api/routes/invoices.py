"""Invoice API routes."""

from fastapi import APIRouter, Query, Response

from src.api.deps import CurrentUser
from src.api.middleware.error_handler import ValidationError
from src.schemas.invoice import InvoiceListResponse, InvoiceResponse
from src.services.invoice_service import InvoiceService

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.get(
    "/download",
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}}, "description": "Invoice PDF"}},
    summary="Download invoice PDF",
    description="Renders one of the authenticated user's invoices as a PDF attachment.",
)
async def download_invoice(
    user: CurrentUser,
    invoice_number: str | None = Query(default=None, alias="invoiceNumber"),
) -> Response:
    """Download an invoice as PDF.

    Args:
        user: The authenticated user.
        invoice_number: Invoice to render.

    Returns:
        Response: ``application/pdf`` attachment.

    Raises:
        ValidationError: 400 if invoiceNumber is missing.
        NotFoundError: 404 if the user has no such invoice.
    """
    if not invoice_number:
        raise ValidationError("Invoice number is required.")

    service = InvoiceService()
    pdf = await service.render_pdf_for_user(user.user_id, invoice_number)

    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={invoice_number}.pdf"},
    )


@router.get(
    "",
    response_model=InvoiceListResponse,
    response_model_by_alias=True,
    summary="List my invoices",
    description="Returns the authenticated user's invoices, newest first.",
)
async def list_invoices(user: CurrentUser) -> InvoiceListResponse:
    """List all invoices for the current user.

    Args:
        user: The authenticated user.

    Returns:
        InvoiceListResponse: List of invoices.
    """
    service = InvoiceService()
    invoices = await service.list_for_user(user.user_id)
    return InvoiceListResponse(items=[InvoiceResponse.model_validate(invoice) for invoice in invoices])


@router.get(
    "/{invoice_number}",
    response_model=InvoiceResponse,
    response_model_by_alias=True,
    summary="Get invoice by number",
    description="Returns one of the authenticated user's invoices.",
)
async def get_invoice(invoice_number: str, user: CurrentUser) -> InvoiceResponse:
    """Get a single invoice.

    Args:
        invoice_number: e.g. "INV-0101251200".
        user: The authenticated user.

    Returns:
        InvoiceResponse: The invoice data.

    Raises:
        NotFoundError: 404 if the user has no such invoice.
    """
    service = InvoiceService()
    invoice = await service.get_for_user(user.user_id, invoice_number)
    return InvoiceResponse.model_validate(invoice)
