from pydantic import BaseModel, Field, model_validator


class PollerConfig(BaseModel):
    """Cloud scheduler tuning.

    ``Rounds`` and ``RoundIntervalSecs`` are derived from the external trigger
    cadence: all rounds of one invocation must fit inside one trigger period,
    otherwise invocations would overlap and a subscription could be polled by
    two rounds at once.
    """

    TriggerIntervalSecs: int = Field(default=60, description="External trigger cadence (celery beat)")
    Rounds: int = Field(default=4, ge=1, description="Poll rounds per invocation")
    RoundIntervalSecs: float = Field(default=15.0, ge=0, description="Spacing between rounds")
    BatchSize: int = Field(default=40, ge=1, description="Subscriptions polled concurrently per batch")
    MaxFailures: int = Field(default=5, ge=1, description="Failures before a subscription is evicted")
    PushTTL: int = Field(default=86400, ge=0, description="TTL header sent with each push")
    RequestTimeoutSecs: float = Field(default=15.0, gt=0, description="Timeout for chat-server and push requests")

    @model_validator(mode="after")
    def _rounds_fit_trigger(self) -> "PollerConfig":
        if self.Rounds * self.RoundIntervalSecs > self.TriggerIntervalSecs:
            raise ValueError(
                f"{self.Rounds} rounds x {self.RoundIntervalSecs}s exceed the "
                f"{self.TriggerIntervalSecs}s trigger interval"
            )
        return self
