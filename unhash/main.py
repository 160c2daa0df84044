# unhash/main.py
from typing import Optional

from fastapi import FastAPI, Request
import uvicorn

from unhash.core.config import Settings, get_settings
from unhash.api.endpoints import discovery, objects
from unhash.api.models.objects import UploadResponse
from unhash.payments.balance import BalanceLedger
from unhash.payments.channel import create_channel_provider
from unhash.payments.middleware import X402Middleware
from unhash.payments.pricing import PriceSchedule
from unhash.storage.store import ContentStore
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, facilitator_client=None) -> FastAPI:
    """
    Build the application from one immutable Settings object.

    Everything that depends on configuration (store, pricing, payment channel,
    balances) is constructed here and shared through app.state.
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(title=settings.PROJECT_NAME)

    app.state.settings = settings
    app.state.store = ContentStore(settings.UNHASH_DATA_DIR)
    app.state.price_schedule = PriceSchedule.from_settings(settings)
    app.state.channel_provider = create_channel_provider(settings)
    app.state.ledger = BalanceLedger()

    app.add_middleware(
        X402Middleware,
        settings=settings,
        schedule=app.state.price_schedule,
        ledger=app.state.ledger,
        facilitator_client=facilitator_client,
    )

    @app.get("/", summary="Health Check", tags=["default"])
    def read_root(request: Request):
        """ Basic liveness banner. """
        logger.info("Root endpoint '/' accessed.")
        return {"status": "ok", "message": f"Welcome to {request.app.state.settings.PROJECT_NAME}"}

    app.include_router(discovery.router, tags=["discovery"])

    # Older clients upload to the site root
    if settings.UNHASH_ROOT_UPLOAD_ENABLED:
        app.add_api_route(
            "/",
            objects.upload_object,
            methods=["POST"],
            response_model=UploadResponse,
            tags=["objects"],
        )

    # GET /{digest} is a catch-all; register it after the fixed paths
    app.include_router(objects.router, tags=["objects"])

    logger.info(
        f"{settings.PROJECT_NAME} storing objects in {settings.UNHASH_DATA_DIR}, "
        f"payments {'enabled' if settings.X402_ENABLED else 'disabled'}"
    )
    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run("unhash.main:app", host=settings.UNHASH_HOST, port=settings.UNHASH_PORT)


if __name__ == "__main__":
    run()
