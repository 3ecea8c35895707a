import logging
import random
import string
import time
from pathlib import Path
from typing import Optional

import aiofiles
import requests
from starlette.concurrency import run_in_threadpool

from sefimap.config import settings

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}


class PhotoUploadError(Exception):
    pass


class PhotoBucket:
    """Bucket unique des photos de participants, servi sous /static/upload/<bucket>/."""

    def __init__(self, base_dir: Optional[str] = None, bucket: Optional[str] = None,
                 public_base_url: Optional[str] = None, max_size: Optional[int] = None):
        self.bucket = bucket or settings.PHOTO_BUCKET
        self.directory = Path(base_dir or settings.UPLOAD_DIR) / self.bucket
        self.public_base_url = (settings.PUBLIC_BASE_URL if public_base_url is None else public_base_url).rstrip("/")
        self.max_size = max_size or settings.MAX_PHOTO_SIZE
        self.url_prefix = f"/static/upload/{self.bucket}/"

    def _ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extension(nom_original: Optional[str]) -> str:
        if nom_original and "." in nom_original:
            return nom_original.rsplit(".", 1)[-1].lower()
        return "jpg"

    @staticmethod
    def create_filename(prefixe: str, extension: str) -> str:
        """Nom unique : préfixe, horodatage en millisecondes et suffixe aléatoire."""
        suffixe = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
        return f"{prefixe}_{int(time.time() * 1000)}_{suffixe}.{extension}"

    def public_url(self, filename: str) -> str:
        return f"{self.public_base_url}{self.url_prefix}{filename}"

    def filename_from_url(self, url: Optional[str]) -> Optional[str]:
        if not url or self.url_prefix not in url:
            return None
        filename = url.split(self.url_prefix)[-1].split("?")[0]
        if not filename or "/" in filename or filename.startswith("."):
            return None
        return filename

    async def upload_photo(self, contenu: bytes, nom_original: Optional[str], prefixe: str = "photo") -> str:
        """Enregistre la photo et retourne son URL publique."""
        extension = self._extension(nom_original)
        if extension not in ALLOWED_EXTENSIONS:
            raise PhotoUploadError(
                f"Extension non autorisée. Extensions autorisées: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            )
        if not contenu:
            raise PhotoUploadError("Fichier photo vide")
        if len(contenu) > self.max_size:
            raise PhotoUploadError("Fichier trop volumineux")

        self._ensure_dir()
        filename = self.create_filename(prefixe, extension)
        filepath = self.directory / filename
        try:
            async with aiofiles.open(filepath, "wb") as f:
                await f.write(contenu)
        except OSError as e:
            logger.error(f"❌ Erreur upload photo {filename}: {e}")
            raise PhotoUploadError("Impossible d'enregistrer la photo") from e

        logger.info(f"✅ Photo enregistrée: {filepath}")
        return self.public_url(filename)

    async def delete_photo(self, url: Optional[str]) -> bool:
        """Suppression au mieux : les échecs sont journalisés, jamais remontés."""
        filename = self.filename_from_url(url)
        if not filename:
            return False
        filepath = self.directory / filename
        try:
            if filepath.exists():
                filepath.unlink()
                logger.info(f"Photo supprimée: {filepath}")
                return True
            logger.warning(f"⚠️ Photo introuvable lors de la suppression: {filepath}")
        except OSError as e:
            logger.warning(f"⚠️ Erreur lors de la suppression de la photo {filename}: {e}")
        return False

    async def read_photo(self, url: Optional[str]) -> Optional[bytes]:
        """Contenu d'une photo (bucket local ou URL distante), None si indisponible."""
        if not url:
            return None
        filename = self.filename_from_url(url)
        if filename:
            filepath = self.directory / filename
            if not filepath.exists():
                return None
            async with aiofiles.open(filepath, "rb") as f:
                return await f.read()
        if url.startswith("http://") or url.startswith("https://"):
            try:
                response = await run_in_threadpool(requests.get, url, timeout=10)
                response.raise_for_status()
                return response.content
            except requests.RequestException as e:
                logger.warning(f"⚠️ Photo distante indisponible {url}: {e}")
        return None


photo_bucket = PhotoBucket()


def get_photo_bucket() -> PhotoBucket:
    return photo_bucket
