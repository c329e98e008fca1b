"""Report API layer."""
from .auth import require_api_key
from .routes import get_report_service, router

__all__ = ["get_report_service", "require_api_key", "router"]
