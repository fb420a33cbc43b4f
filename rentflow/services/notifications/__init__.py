from rentflow.services.notifications.fanout import (
    NotificationReport,
    build_subscription_notifications,
    dispatch_notifications,
)
from rentflow.services.notifications.push import (
    ExpoPushGateway,
    PushGateway,
    PushMessage,
    is_expo_push_token,
)

__all__ = [
    "NotificationReport",
    "build_subscription_notifications",
    "dispatch_notifications",
    "ExpoPushGateway",
    "PushGateway",
    "PushMessage",
    "is_expo_push_token",
]
