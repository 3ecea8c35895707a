import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from sefimap.auth.models import AdminUser, Role
from sefimap.auth.permissions import require_role
from sefimap.db.session import get_db
from sefimap.documents.badges import generer_badge_pdf, generer_badges_pdf, nom_fichier_badge, nom_fichier_badges
from sefimap.documents.bulletins import (
    generer_bulletin_pdf,
    generer_bulletins_pdf,
    nom_fichier_bulletin,
    nom_fichier_bulletins,
)
from sefimap.documents.services import AucunDocumentError, DocumentService
from sefimap.inscriptions.services import InscriptionNotFoundError
from sefimap.scientifique.services import NoteNotFoundError
from sefimap.utils.storage import PhotoBucket, get_photo_bucket

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])


def _pdf(contenu: bytes, filename: str) -> Response:
    return Response(
        content=contenu,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# 🪪 Badges (secrétariat)
@router.get("/badges")
async def badges(
    ids: Optional[List[str]] = Query(None),
    user: AdminUser = Depends(require_role(Role.SECRETAIRE.value)),
    db: AsyncSession = Depends(get_db),
    bucket: PhotoBucket = Depends(get_photo_bucket),
):
    """Un badge par page ; sans sélection, tous les participants validés."""
    try:
        donnees = await DocumentService(db, bucket).badges(ids)
        contenu = await run_in_threadpool(generer_badges_pdf, donnees)
    except AucunDocumentError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"❌ Erreur génération des badges: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la génération des badges")
    return _pdf(contenu, nom_fichier_badges())


@router.get("/badges/{inscription_id}")
async def badge(
    inscription_id: str,
    user: AdminUser = Depends(require_role(Role.SECRETAIRE.value)),
    db: AsyncSession = Depends(get_db),
    bucket: PhotoBucket = Depends(get_photo_bucket),
):
    try:
        inscription, photo = await DocumentService(db, bucket).badge(inscription_id)
        contenu = await run_in_threadpool(generer_badge_pdf, inscription, photo)
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")
    except Exception as e:
        logger.error(f"❌ Erreur génération du badge {inscription_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la génération du badge")
    return _pdf(contenu, nom_fichier_badge(inscription))


# 📄 Bulletins (responsable scientifique)
@router.get("/bulletins")
async def bulletins(
    classe_id: Optional[str] = None,
    user: AdminUser = Depends(require_role(Role.SCIENTIFIQUE.value)),
    db: AsyncSession = Depends(get_db),
    bucket: PhotoBucket = Depends(get_photo_bucket),
):
    try:
        donnees, classe_nom = await DocumentService(db, bucket).bulletins(classe_id)
        contenu = await run_in_threadpool(generer_bulletins_pdf, donnees)
    except AucunDocumentError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"❌ Erreur génération des bulletins: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la génération des bulletins")
    return _pdf(contenu, nom_fichier_bulletins(classe_nom))


@router.get("/bulletins/{note_id}")
async def bulletin(
    note_id: str,
    user: AdminUser = Depends(require_role(Role.SCIENTIFIQUE.value)),
    db: AsyncSession = Depends(get_db),
    bucket: PhotoBucket = Depends(get_photo_bucket),
):
    try:
        note, rang, effectif = await DocumentService(db, bucket).bulletin(note_id)
        contenu = await run_in_threadpool(generer_bulletin_pdf, note, rang, effectif)
    except NoteNotFoundError:
        raise HTTPException(status_code=404, detail="Note non trouvée")
    except Exception as e:
        logger.error(f"❌ Erreur génération du bulletin {note_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la génération du bulletin")
    return _pdf(contenu, nom_fichier_bulletin(note))
