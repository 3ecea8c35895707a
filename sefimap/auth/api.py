import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from sefimap.auth import hosted
from sefimap.auth.dependencies import (
    charger_profil,
    cle_de_session,
    decode_access_token,
    get_current_user,
    oauth2_scheme,
)
from sefimap.auth.models import AdminUser
from sefimap.auth.schemas import AdminUserOut, LoginResponse, SessionResponse, UserLogin
from sefimap.config import settings
from sefimap.data.provider import DataProvider, get_data_provider
from sefimap.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        session = await run_in_threadpool(hosted.sign_in, credentials.email, credentials.password)
    except hosted.AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    user_id = (session.get("user") or {}).get("id")
    user = await charger_profil(db, user_id) if user_id else None
    if not user:
        logger.warning(f"❌ Aucun profil administrateur pour {credentials.email}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Aucun profil administrateur associé à ce compte."
        )

    await provider.ouvrir_session(cle_de_session(session["access_token"]), user.id)

    return LoginResponse(
        access_token=session["access_token"],
        refresh_token=session.get("refresh_token"),
        expires_in=session.get("expires_in"),
        user=AdminUserOut.model_validate(user),
        role=user.role,
        redirect=user.home_route,
    )


@router.post("/logout")
async def logout(
    token: str = Depends(oauth2_scheme),
    user: AdminUser = Depends(get_current_user),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        await run_in_threadpool(hosted.sign_out, token)
    except hosted.AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    await provider.fermer_session(cle_de_session(token), user.id)
    logger.info(f"👋 Déconnexion de {user.email}")
    return {"message": "Déconnexion réussie"}


@router.get("/session", response_model=SessionResponse)
async def check_session(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
):
    """Vérification de session avec délai de sécurité (connexion lente)."""
    user_id = decode_access_token(token)
    try:
        user = await asyncio.wait_for(
            charger_profil(db, user_id),
            timeout=settings.SESSION_CHECK_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.error(f"⏱️ Vérification de session expirée pour {user_id}")
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Connexion lente. Veuillez vérifier votre connexion internet et réessayer."
        )

    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Utilisateur non trouvé")

    return SessionResponse(user=AdminUserOut.model_validate(user), role=user.role, redirect=user.home_route)


@router.get("/me", response_model=AdminUserOut)
async def get_me(user: AdminUser = Depends(get_current_user)):
    return user
