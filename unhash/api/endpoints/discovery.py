# unhash/api/endpoints/discovery.py
import logging

from fastapi import APIRouter, Depends

from unhash.api.endpoints.objects import get_app_settings
from unhash.api.models.objects import DiscoveryResponse
from unhash.core.config import Settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/.well-known/unhash.json", response_model=DiscoveryResponse)
async def service_discovery(settings: Settings = Depends(get_app_settings)) -> DiscoveryResponse:
    """Tell clients where to upload."""
    return DiscoveryResponse(upload=settings.upload_url)
