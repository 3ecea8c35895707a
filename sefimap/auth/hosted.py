import logging
from typing import Optional

import requests

from sefimap.config import settings

logger = logging.getLogger(__name__)

# Messages de l'auth hébergée traduits pour l'utilisateur
KNOWN_AUTH_ERRORS = {
    "Invalid login credentials": "Email ou mot de passe incorrect.",
    "Email not confirmed": "Veuillez confirmer votre email avant de vous connecter.",
}


class AuthError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def translate_auth_error(message: Optional[str]) -> Optional[str]:
    if not message:
        return None
    for known, traduction in KNOWN_AUTH_ERRORS.items():
        if known.lower() in message.lower():
            return traduction
    return None


def _headers(token: Optional[str] = None) -> dict:
    headers = {
        "apikey": settings.BACKEND_ANON_KEY,
        "Content-Type": "application/json",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"Erreur HTTP {response.status_code}"
    return (
        payload.get("error_description")
        or payload.get("msg")
        or payload.get("message")
        or payload.get("error")
        or f"Erreur HTTP {response.status_code}"
    )


def sign_in(email: str, password: str) -> dict:
    """
    🔐 Connexion email / mot de passe auprès de l'auth hébergée.

    Retourne la réponse de l'auth (access_token, refresh_token, user...).
    Les erreurs connues sont traduites en français, les autres remontées telles quelles.
    """
    url = f"{settings.BACKEND_URL.rstrip('/')}/auth/v1/token"
    response = requests.post(
        url,
        params={"grant_type": "password"},
        json={"email": email, "password": password},
        headers=_headers(),
        timeout=10,
    )
    if response.status_code >= 400:
        message = _error_message(response)
        traduction = translate_auth_error(message)
        logger.warning(f"⛔ Échec de connexion pour {email}: {message}")
        if traduction:
            raise AuthError(traduction, status_code=401)
        raise AuthError(message, status_code=response.status_code)

    logger.info(f"✅ Connexion réussie pour {email}")
    return response.json()


def sign_out(token: str) -> None:
    url = f"{settings.BACKEND_URL.rstrip('/')}/auth/v1/logout"
    response = requests.post(url, headers=_headers(token), timeout=10)
    if response.status_code >= 400:
        message = _error_message(response)
        logger.warning(f"⚠️ Échec de déconnexion: {message}")
        raise AuthError(message, status_code=response.status_code)
