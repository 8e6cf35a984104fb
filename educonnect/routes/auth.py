from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.controllers.auth_controller import (
    get_me,
    login,
    register,
    request_registration,
    request_role_change,
    update_profile,
)
from educonnect.core.database import get_db
from educonnect.core.dependencies import get_current_user
from educonnect.core.notifications import NotificationDispatcher, get_notifier
from educonnect.models.user import User
from educonnect.schemas.auth import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    NoChallenge,
    ProfileUpdateRequest,
    RegisterRequest,
    RegistrationRequest,
    UserInfo,
)
from educonnect.schemas.role_request import RequestSubmittedResponse, RoleChangeRequest

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post(
    "/register",
    response_model=NoChallenge,
    status_code=status.HTTP_201_CREATED,
    summary="Self Registration",
    description="""
Creates an account with role `pending`.
The returned token only reaches `/auth/me`, `/auth/profile` and
`/auth/request-verification` until a role request is approved.
    """,
)
async def register_user(
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> NoChallenge:
    return await register(payload, db)


@router.post(
    "/request-registration",
    response_model=RequestSubmittedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request Registration",
    description="""
Files a role request for someone without an account.
No account exists until a reviewer approves the request.
    """,
)
async def submit_registration_request(
    payload: RegistrationRequest,
    db: AsyncSession = Depends(get_db),
) -> RequestSubmittedResponse:
    return await request_registration(payload, db)


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Login",
    description="""
Authenticate with email + password.

The response is tagged by `kind`:
- `no_challenge`: login complete, `access_token` is a full session.
- `challenge_pending`: second factor required. Send the code with
  `pending_token` to `POST /auth/2fa/verify-login`.

**How to use the token:**
Add to request headers: `Authorization: Bearer <your_token>`
    """,
)
async def user_login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return await login(payload, db, notifier)


@router.get(
    "/me",
    response_model=UserInfo,
    summary="Get Current User",
    description="Returns the authenticated user's profile. Requires Bearer token in header.",
)
async def me(
    current_user: User = Depends(get_current_user),
) -> UserInfo:
    return await get_me(current_user)


@router.put(
    "/profile",
    response_model=UserInfo,
    summary="Update Profile",
)
async def edit_profile(
    payload: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserInfo:
    return await update_profile(current_user, payload, db)


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Logout",
    description="""
JWT tokens are stateless, the server has no session to destroy.
To logout: delete the token from your frontend (sessionStorage/localStorage).
This endpoint exists to give the frontend a clean API to call.
    """,
)
async def logout() -> MessageResponse:
    return MessageResponse(detail="Logged out. Delete your token on the client side.")


@router.post(
    "/request-verification",
    response_model=RequestSubmittedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request Role Change",
    description="Files a role change request for the current user. One pending request at a time.",
)
async def submit_role_change(
    payload: RoleChangeRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RequestSubmittedResponse:
    return await request_role_change(current_user, payload, db)
