"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .asset_lock import AssetLock, LocalAssetLock, RedisAssetLock
from .gateway import GatewayError, GatewayOrder, PaymentGateway
from .notifier import LogNotificationDispatcher, NotificationDispatcher

__all__ = [
    'AssetLock', 'LocalAssetLock', 'RedisAssetLock',
    'GatewayError', 'GatewayOrder', 'PaymentGateway',
    'LogNotificationDispatcher', 'NotificationDispatcher',
]
