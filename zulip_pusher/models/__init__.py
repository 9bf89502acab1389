from .subscription import PushKeys, Subscription

__all__ = ["PushKeys", "Subscription"]
