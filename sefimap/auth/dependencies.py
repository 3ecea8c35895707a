import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sefimap.auth.models import AdminUser
from sefimap.config import settings
from sefimap.db.session import get_db

logger = logging.getLogger(__name__)

# Utilisé pour extraire le token depuis le header Authorization
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str) -> str:
    """
    🔐 Vérifie le token émis par l'auth hébergée et retourne l'identifiant
    de l'utilisateur (champ 'sub').
    """
    if not token:
        logger.warning("⛔ Accès refusé : token manquant")
        raise _unauthorized("Token d'authentification manquant")

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.ALGORITHM],
            audience=settings.JWT_AUDIENCE,
        )
    except JWTError as e:
        logger.warning(f"⛔ Token invalide ou expiré. Erreur : {e}")
        raise _unauthorized("Token invalide ou expiré")

    sub: Optional[str] = payload.get("sub")
    if not sub:
        logger.warning("⚠️ Token valide mais champ 'sub' manquant")
        raise _unauthorized("Token invalide : 'sub' manquant")
    return sub


def cle_de_session(token: str) -> str:
    """
    Identifiant de la session de l'auth hébergée (claim 'session_id'), stable
    d'un rafraîchissement de token à l'autre. À défaut, le token lui-même.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return token
    return claims.get("session_id") or token


async def charger_profil(db: AsyncSession, user_id: str) -> Optional[AdminUser]:
    """Profil administrateur (et donc rôle) associé à un utilisateur de l'auth."""
    result = await db.execute(select(AdminUser).where(AdminUser.id == user_id))
    return result.scalars().first()


# 🔒 Récupération obligatoire de l'administrateur connecté
async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> AdminUser:
    user_id = decode_access_token(token)

    user = await charger_profil(db, user_id)
    if not user:
        logger.warning(f"❌ Profil administrateur introuvable : id={user_id}")
        raise _unauthorized("Utilisateur non trouvé")

    logger.info(f"✅ Utilisateur authentifié : id={user.id}, role={user.role}")
    return user
