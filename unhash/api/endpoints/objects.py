# unhash/api/endpoints/objects.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Request
from fastapi.responses import FileResponse, Response
from starlette.concurrency import run_in_threadpool

from unhash.api.models.objects import UploadResponse
from unhash.core.config import Settings
from unhash.payments.balance import BalanceLedger
from unhash.payments.channel import ChannelProvider, is_valid_pay_token
from unhash.payments.middleware import (
    PAY_BALANCE_HEADER,
    PAY_TOKEN_HEADER,
    declared_content_length,
)
from unhash.payments.pricing import PriceSchedule
from unhash.storage.ingest import IngestionError, ObjectTooLarge, ingest_stream
from unhash.storage.store import CommitOutcome, ContentStore

logger = logging.getLogger(__name__)
router = APIRouter()

UPLOAD_LENGTH_HEADER = "Upload-Length"


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> ContentStore:
    return request.app.state.store


def get_price_schedule(request: Request) -> PriceSchedule:
    return request.app.state.price_schedule


def get_channel_provider(request: Request) -> ChannelProvider:
    return request.app.state.channel_provider


def get_ledger(request: Request) -> BalanceLedger:
    return request.app.state.ledger


@router.options("/upload", status_code=204)
async def quote_upload(
    upload_length: Optional[int] = Header(None, alias=UPLOAD_LENGTH_HEADER, ge=0),
    pay_token: Optional[str] = Header(None, alias=PAY_TOKEN_HEADER),
    settings: Settings = Depends(get_app_settings),
    schedule: PriceSchedule = Depends(get_price_schedule),
    channel_provider: ChannelProvider = Depends(get_channel_provider),
    ledger: BalanceLedger = Depends(get_ledger),
):
    """
    Quote the price of an upload.

    Prices the size given in Upload-Length, or the default worst-case size if
    the header is missing; the priced size is echoed back in Upload-Length so
    the client can send the real size with the upload. The Pay header carries
    "<price> <destination> <shared secret>". Nothing is stored.
    """
    quote = schedule.quote(upload_length)
    channel = channel_provider.address(pay_token)

    headers = {
        UPLOAD_LENGTH_HEADER: str(quote.size_bytes),
        "Pay": f"{quote.price} {channel.destination} {channel.shared_secret}",
        PAY_TOKEN_HEADER: channel.token,
    }
    if settings.UNHASH_EXPOSE_BALANCE and is_valid_pay_token(pay_token):
        headers[PAY_BALANCE_HEADER] = str(ledger.balance(pay_token))

    logger.info(
        f"Quoted {quote.price} units for {quote.size_bytes} bytes"
        f"{' (default size)' if quote.size_defaulted else ''}"
    )
    return Response(status_code=204, headers=headers)


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={201: {"model": UploadResponse, "description": "Object stored"}},
)
async def upload_object(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_app_settings),
    store: ContentStore = Depends(get_store),
):
    """
    Store the raw request body as a content-addressed object.

    Payment for the declared Content-Length is enforced by the payment gate
    before this runs. Returns 201 with the digest for a new object, or 200
    with the digest if identical bytes were already stored.
    """
    expected_size = declared_content_length(request)
    max_size = settings.UNHASH_DEFAULT_QUOTE_SIZE if expected_size is None else None

    try:
        result = await ingest_stream(
            request.stream(),
            store.data_dir,
            expected_size=expected_size,
            max_size=max_size,
        )
    except ObjectTooLarge as e:
        logger.warning(f"Rejected oversized upload: {e}")
        raise HTTPException(status_code=413, detail=str(e))
    except IngestionError as e:
        logger.error(f"Upload ingestion failed: {e}")
        raise HTTPException(status_code=500, detail="Ingestion failed")
    except OSError as e:
        logger.error(f"Cannot create upload temp file: {e}")
        raise HTTPException(status_code=500, detail="Storage failure")

    try:
        outcome = await run_in_threadpool(store.commit, result)
    except OSError as e:
        logger.error(f"Failed to commit upload {result.digest}: {e}")
        raise HTTPException(status_code=500, detail="Storage failure")

    response.status_code = 201 if outcome is CommitOutcome.CREATED else 200
    return UploadResponse(digest=result.digest)


@router.get("/{digest}")
async def download_object(
    digest: str = Path(..., description="SHA-256 of the object, 64 hex characters"),
    store: ContentStore = Depends(get_store),
):
    """
    Stream an object's bytes.

    Unknown and malformed identifiers both yield an empty 404.
    """
    path = store.open_path(digest)
    if path is None:
        logger.info(f"Object not found: {digest[:64]}")
        return Response(status_code=404)

    return FileResponse(path, media_type="application/octet-stream")
