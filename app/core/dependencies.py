from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.core.config import Settings
from app.core.database import DatabaseManager
from app.models import user_model
from app.modules.payment.service import PaymentService
from app.schemas import token_schema
from app.repository.user_repository import user_repository

# The tokenUrl should point to a generic token endpoint
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

# Collaborators are built by create_app() and kept on app.state.

def get_settings_dependency(request: Request) -> Settings:
    return request.app.state.settings

async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    db_manager: DatabaseManager = request.app.state.db_manager
    async for session in db_manager.get_db_session():
        yield session

def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service

# --- User Authentication Dependencies ---

async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings_dependency),
) -> user_model.Users:
    """
    Dependency to get the current user from a JWT token.
    Decodes the token, validates the user, and returns the full user object.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception

        token_data = token_schema.TokenData(
            sub=user_id,
            role=payload.get("role"),
            username=payload.get("username"),
        )

    except JWTError:
        raise credentials_exception

    try:
        user = await user_repository.get_user(db, user_id=int(token_data.sub))
    except ValueError:
        raise credentials_exception
    if user is None:
        raise credentials_exception

    return user
