from .subscription import (
    LocalSubscriptionRepository,
    RedisSubscriptionRepository,
    SubscriptionRepository,
    get_subscription_repository,
)

__all__ = [
    "LocalSubscriptionRepository",
    "RedisSubscriptionRepository",
    "SubscriptionRepository",
    "get_subscription_repository",
]
