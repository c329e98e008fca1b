"""Report API FastAPI application entry point."""
import logging

from fastapi import FastAPI

from .api.routes import router as api_router


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build the report API with its routes mounted under /api/v1."""
    app = FastAPI(
        title="Ad Report API",
        version="0.1.0",
        description="Ad-attribution reports with realtime merge and ad rankings",
    )
    app.include_router(api_router)

    # Unauthenticated liveness check
    @app.get("/health", tags=["health"])
    def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": "adreport-api"}

    logger.info("Report API created with %s routes", len(app.routes))
    return app


app = create_app()
