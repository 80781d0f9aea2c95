from __future__ import annotations

from urllib.parse import quote

from fastapi import APIRouter, Request, status
from fastapi.responses import RedirectResponse
from loguru import logger

from core.channels.documents import blob_key, strip_blob_suffix
from core.channels.resolver import ChannelResolver
from core.settings import Settings
from core.storage import ObjectStorage

router = APIRouter(tags=["channels"])


def _permanent_url(settings: Settings, blob_id: str) -> str:
    return f"{settings.server.base_url}/permanent/{quote(blob_key(blob_id))}"


# Handlers are plain functions so the blocking storage calls run in the
# threadpool instead of on the event loop.
@router.get("/channel/{file_name:path}", response_class=RedirectResponse)
def redirect_channel(file_name: str, request: Request) -> RedirectResponse:
    """Redirect to the permanent URL of the channel's latest tarball."""
    channel_name = strip_blob_suffix(file_name)
    resolver: ChannelResolver = request.app.state.resolver
    blob_id = resolver.resolve_latest(channel_name)

    permanent_url = _permanent_url(request.app.state.settings, blob_id)
    logger.debug("Channel {channel} resolved to {blob_id}", channel=channel_name, blob_id=blob_id)
    response = RedirectResponse(permanent_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    # Lockable HTTP tarball protocol: fetchers record this URL in lock files.
    response.headers["Link"] = f'<{permanent_url}>; rel="immutable"'
    return response


@router.get("/permanent/{file_name:path}", response_class=RedirectResponse)
def redirect_permanent(file_name: str, request: Request) -> RedirectResponse:
    """Redirect to a short-lived presigned URL for one immutable tarball."""
    blob_id = strip_blob_suffix(file_name)
    storage: ObjectStorage = request.app.state.storage
    settings: Settings = request.app.state.settings
    url = storage.get_presigned_url(blob_key(blob_id), expires=settings.storage.presign_ttl_seconds)
    return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


__all__ = ["router"]
