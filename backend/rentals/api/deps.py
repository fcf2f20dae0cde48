"""
Shared FastAPI dependencies: caller identity, role guards and the pluggable
collaborators (asset lock, payment gateway, notifier).
"""

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.security import get_current_user_id
from rentals.db.session import get_db
from rentals.models.user import User
from rentals.services.interfaces.asset_lock import AssetLock
from rentals.services.interfaces.gateway import PaymentGateway
from rentals.services.interfaces.notifier import NotificationDispatcher
from rentals.services import strategy_factory


async def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_roles(*roles: str):
    async def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user
    return _guard


require_staff = require_roles("admin", "owner")


def get_asset_lock() -> AssetLock:
    return strategy_factory.get_asset_lock()


def get_gateway() -> PaymentGateway:
    return strategy_factory.get_gateway()


def get_notifier() -> NotificationDispatcher:
    return strategy_factory.get_notifier()
