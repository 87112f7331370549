from fastapi import APIRouter, Depends, Request, status

from shared.utils import SuccessResponse
from shared.security_config import limiter

from marketplace.container import Services
from marketplace.dependencies import get_services, get_current_user
from marketplace.schemas import (
    UserRegister, UserLogin, Token, RefreshTokenRequest, LogoutRequest, UserResponse
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=SuccessResponse[UserResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def register(user: UserRegister, request: Request, services: Services = Depends(get_services)):
    created = await services.users.register(user)
    return SuccessResponse(data=created, message="User registered successfully")


@router.post("/login", response_model=SuccessResponse[Token])
@limiter.limit("5/minute")
async def login(user_credentials: UserLogin, request: Request, services: Services = Depends(get_services)):
    tokens = await services.users.login(user_credentials.email, user_credentials.password)
    return SuccessResponse(data=tokens)


@router.post("/refresh", response_model=SuccessResponse[Token])
@limiter.limit("20/minute")
async def refresh_token(body: RefreshTokenRequest, request: Request, services: Services = Depends(get_services)):
    tokens = await services.users.refresh(body.refresh_token)
    return SuccessResponse(data=tokens)


@router.post("/logout", response_model=SuccessResponse[dict])
async def logout(body: LogoutRequest, payload: dict = Depends(get_current_user),
                 services: Services = Depends(get_services)):
    await services.users.logout(payload, body.refresh_token)
    return SuccessResponse(message="Logged out successfully")


@router.get("/me", response_model=SuccessResponse[UserResponse])
async def me(payload: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    user = await services.users.get_user(payload["sub"])
    return SuccessResponse(data=user)
