"""API endpoints package for the gateway."""

from tendergate.app.api.analyze_pdf import router as analyze_pdf_router
from tendergate.app.api.chat import router as chat_router
from tendergate.app.api.status import router as status_router

__all__ = [
    "analyze_pdf_router",
    "chat_router",
    "status_router",
]
