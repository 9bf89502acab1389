"""Cloud push subscription endpoints."""

import json
import logging
from datetime import datetime
from typing import Any

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from zulip_pusher.api.deps import get_http_client, get_push_codec, get_repository, get_vault
from zulip_pusher.core.filters import FilterSettings
from zulip_pusher.core.notification.exceptions import WebPushError
from zulip_pusher.core.notification.webpush import PushCodec
from zulip_pusher.core.vault import CredentialVault
from zulip_pusher.core.zulip.client import ZulipClient
from zulip_pusher.core.zulip.events import ZulipCredentials
from zulip_pusher.core.zulip.exceptions import ZulipApiError, ZulipConnectionError
from zulip_pusher.models.subscription import PushKeys, Subscription, short_endpoint
from zulip_pusher.repos.subscription import SubscriptionRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["subscriptions"])


# --- Response / Request models -----------------------------------------------


class BrowserSubscription(BaseModel):
    endpoint: str = Field(min_length=1)
    keys: PushKeys


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription: BrowserSubscription
    zulip_server_url: str = Field(alias="zulipServerUrl", min_length=1)
    zulip_email: str = Field(alias="zulipEmail", min_length=1)
    zulip_api_key: str = Field(alias="zulipApiKey", min_length=1)
    filters: dict[str, Any] | None = None


class UpdateRequest(BaseModel):
    endpoint: str = Field(min_length=1)
    filters: dict[str, Any] | None = None


class EndpointRequest(BaseModel):
    endpoint: str = Field(min_length=1)


class RegisterResponse(BaseModel):
    success: bool
    endpoint: str


class SuccessResponse(BaseModel):
    success: bool


def _merge_filters(base: FilterSettings, patch: dict[str, Any] | None) -> FilterSettings:
    try:
        return base.merge(patch)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"invalid filters: {e.errors()[0]['msg']}") from e


# --- Endpoints ----------------------------------------------------------------


@router.post("/register", response_model=RegisterResponse)
async def register_subscription(
    body: RegisterRequest,
    repo: SubscriptionRepository = Depends(get_repository),
    vault: CredentialVault = Depends(get_vault),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> RegisterResponse:
    """
    Store a browser push subscription with the Zulip account it watches.

    The credentials are verified against the Zulip server before anything is
    stored; a re-registration replaces the previous record and its queue.
    """
    endpoint = body.subscription.endpoint
    filters = _merge_filters(FilterSettings(), body.filters)

    creds = ZulipCredentials(body.zulip_server_url, body.zulip_email, body.zulip_api_key)
    try:
        user = await ZulipClient(creds, http_client=http_client).test_connection()
    except ZulipApiError as e:
        logger.info("Rejected credentials for %s: %s", creds.base_url, e)
        raise HTTPException(status_code=401, detail="invalid zulip credentials") from e
    except ZulipConnectionError as e:
        logger.warning("Cannot verify credentials against %s: %s", creds.base_url, e)
        raise HTTPException(status_code=400, detail="failed to verify credentials") from e

    sub = Subscription(
        endpoint=endpoint,
        keys=body.subscription.keys,
        zulip_server_url=creds.base_url,
        encrypted_credentials=vault.encrypt(endpoint, body.zulip_email, body.zulip_api_key),
        user_id=user.user_id,
        filters=filters,
    )
    await repo.save(sub)
    logger.info("Subscription registered: %s", short_endpoint(endpoint))
    return RegisterResponse(success=True, endpoint=endpoint)


@router.post("/update", response_model=SuccessResponse)
async def update_subscription(
    body: UpdateRequest,
    repo: SubscriptionRepository = Depends(get_repository),
) -> SuccessResponse:
    """Apply a partial filter update to an existing subscription."""
    sub = await repo.get(body.endpoint)
    if sub is None:
        raise HTTPException(status_code=404, detail="subscription not found")

    sub.filters = _merge_filters(sub.filters, body.filters)
    await repo.save(sub)
    return SuccessResponse(success=True)


@router.post("/unregister", response_model=SuccessResponse)
async def unregister_subscription(
    body: EndpointRequest,
    repo: SubscriptionRepository = Depends(get_repository),
) -> SuccessResponse:
    """Remove a subscription; unknown endpoints succeed too."""
    await repo.delete(body.endpoint)
    return SuccessResponse(success=True)


@router.post("/test-push", response_model=None)
async def send_test_push(
    body: EndpointRequest,
    repo: SubscriptionRepository = Depends(get_repository),
    codec: PushCodec = Depends(get_push_codec),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> dict[str, Any] | JSONResponse:
    """Send a synthetic notification to verify the push path end to end."""
    sub = await repo.get(body.endpoint)
    if sub is None:
        raise HTTPException(status_code=404, detail="subscription not found")

    payload = json.dumps(
        {
            "title": "Test Notification",
            "body": f"Cloud push is working! ({datetime.now().strftime('%H:%M:%S')})",
            "tag": "zulip-test",
        }
    ).encode("utf-8")

    try:
        result = await codec.send(http_client, sub.endpoint, sub.keys.p256dh, sub.keys.auth, payload)
    except WebPushError as e:
        logger.error("Test push to %s could not be built: %s", short_endpoint(sub.endpoint), e)
        raise HTTPException(status_code=500, detail=str(e)) from e

    if result.gone:
        await repo.delete(sub.endpoint)
        return JSONResponse(status_code=410, content={"error": "subscription expired", "status": result.status_code})
    if not result.ok:
        return JSONResponse(
            status_code=502,
            content={"error": "push failed", "status": result.status_code, "details": result.detail},
        )
    return {"success": True, "status": result.status_code}
