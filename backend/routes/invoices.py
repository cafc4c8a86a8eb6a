"""
Stored invoice and credit-note PDFs.
"""
import logging
import os
import re

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from deps import get_invoices
from domain.errors import NotFoundError
from services.invoice_service import InvoiceOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(tags=["invoices"])

# factuur-2025-00001.pdf, factuur-AGO-05006.pdf, credit-2025-00003.pdf
_FILENAME = re.compile(r"^(factuur|credit)-[A-Za-z0-9-]+\.pdf$")


@router.get("/invoices/{filename}")
async def download_invoice(filename: str, invoices: InvoiceOrchestrator = Depends(get_invoices)):
    if not _FILENAME.match(filename):
        raise NotFoundError("Invoice", filename)
    path = os.path.join(invoices.invoice_dir, filename)
    if not os.path.isfile(path):
        raise NotFoundError("Invoice", filename)
    return FileResponse(path, media_type="application/pdf", filename=filename)
