from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from educonnect.core.database import get_db
from educonnect.core.errors import AccountState, Forbidden, InvalidToken, NotAuthenticated
from educonnect.core.security import decode_access_token
from educonnect.models.user import User, UserRole

bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Full-session guard. A pending-2FA token decodes fine but is not an
    access token, so it is rejected here like any other invalid token.
    """
    if not credentials:
        raise NotAuthenticated()

    try:
        payload = decode_access_token(credentials.credentials)
    except InvalidToken:
        raise NotAuthenticated()

    result = await db.execute(select(User).where(User.id == int(payload["sub"])))
    user = result.scalar_one_or_none()

    if user is None:
        raise NotAuthenticated()

    return user


def require_roles(*roles: UserRole):
    """
    Role gate, e.g. Depends(require_roles(UserRole.ADMIN, UserRole.FACULTY)).
    Unauthenticated callers get 401 from get_current_user; authenticated
    callers with the wrong role get 403.
    """
    async def _guard(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise Forbidden(f"User role {current_user.role.value} is not authorized to access this route")
        return current_user

    return _guard


async def require_verified(current_user: User = Depends(get_current_user)) -> User:
    """Admins always pass; pending or unverified accounts are blocked."""
    if current_user.role == UserRole.ADMIN:
        return current_user

    if current_user.role == UserRole.PENDING or not current_user.is_verified:
        raise AccountState("Account not verified. Please complete verification or wait for approval.")

    return current_user
