from pydantic import BaseModel, Field


class ClientConfig(BaseModel):
    """Device-local long-poll session defaults."""

    KeepaliveSecs: int = Field(default=90, ge=1, description="Server-side blocking timeout for long-polls")
    AbortMarginSecs: float = Field(default=5.0, gt=0, description="Client abort timeout margin over the keepalive")
    ErrorBackoffSecs: float = Field(default=2.0, ge=0, description="Backoff after a non-expiry poll error")
    RequestTimeoutSecs: float = Field(default=15.0, gt=0, description="Timeout for non-polling requests")
