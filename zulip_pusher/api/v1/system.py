from fastapi import APIRouter

from zulip_pusher import __version__
from zulip_pusher.configs import configs

router = APIRouter(tags=["system"])


@router.get("/status", response_model=dict[str, str])
async def get_status() -> dict[str, str]:
    """Liveness probe with the running version."""
    return {"status": "ok", "version": __version__}


@router.get("/vapid-public-key", response_model=dict[str, str])
async def get_vapid_public_key() -> dict[str, str]:
    """
    Public VAPID key browsers pass as ``applicationServerKey`` when subscribing.

    Empty when push is not configured.
    """
    return {"publicKey": configs.Vapid.PublicKey}
