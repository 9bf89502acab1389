from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    Host: str = Field(default="localhost", description="Redis host")
    Port: int = Field(default=6379, description="Redis port")
    DB: int = Field(default=0, description="Redis database index")
    Password: str = Field(default="", description="Redis password (empty for none)")
    KeyPrefix: str = Field(default="zulip-pusher:sub:", description="Key prefix for stored subscriptions")

    @property
    def REDIS_URL(self) -> str:
        auth = f":{self.Password}@" if self.Password else ""
        return f"redis://{auth}{self.Host}:{self.Port}/{self.DB}"
