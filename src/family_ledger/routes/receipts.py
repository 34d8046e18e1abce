"""Receipt scanning route. Returns suggested transaction fields; the client decides whether to save them."""

from fastapi import APIRouter, Depends

from family_ledger.integrations.receipt_scanner import ReceiptScanRequest, ReceiptScanResponse, receipt_scanner
from family_ledger.models.auth_models import Principal
from family_ledger.routes.auth.dependencies import get_current_principal
from family_ledger.utils.error_handling import translate_errors
from family_ledger.utils.logging_utils import log_performance

router = APIRouter(prefix="/receipts", tags=["Receipts"])


@router.post("/scan", response_model=ReceiptScanResponse)
@log_performance("receipt_scan_endpoint")
async def scan_receipt(
    body: ReceiptScanRequest, principal: Principal = Depends(get_current_principal)
) -> ReceiptScanResponse:
    with translate_errors("scan_receipt", user_id=principal.id):
        receipt = await receipt_scanner.scan(body.image)
    return ReceiptScanResponse(receipt=receipt)
