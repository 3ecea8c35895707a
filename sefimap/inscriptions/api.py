import json
import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from sefimap.auth.models import AdminUser, Role
from sefimap.auth.permissions import require_role
from sefimap.data.provider import DataProvider, get_data_provider
from sefimap.db.session import get_db
from sefimap.dortoirs.services import DortoirCompletError, DortoirNotFoundError
from sefimap.inscriptions.models import NiveauFormation, Sexe, StatutInscription, TypeInscription
from sefimap.inscriptions.schemas import (
    AttributionDortoir,
    InscriptionFilters,
    InscriptionOut,
    InscriptionPresentielle,
    InscriptionPublique,
    InscriptionRecente,
    InscriptionUpdate,
    ResultatValidationGroupee,
    SelectionIds,
    ValidationEtape,
    erreurs_par_champ,
)
from sefimap.inscriptions.services import (
    ChefQuartierNotFoundError,
    DortoirRequisError,
    InscriptionNotFoundError,
    InscriptionService,
    PhotoRequiseError,
    TransitionInvalideError,
    valider_etape,
)
from sefimap.utils.exports import XLSX_MEDIA_TYPE, exporter_inscriptions_xlsx
from sefimap.utils.storage import PhotoBucket, PhotoUploadError, get_photo_bucket

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inscriptions", tags=["inscriptions"])
president_router = APIRouter(prefix="/president", tags=["president"])

secretariat = require_role(Role.SECRETAIRE.value)
lecture = require_role(Role.SECRETAIRE.value, Role.FINANCIER.value, Role.SCIENTIFIQUE.value)


def _charger_formulaire(data: str, schema, **forces):
    """Champ multipart 'data' (JSON) -> modèle pydantic, erreurs françaises par champ."""
    try:
        contenu = json.loads(data)
    except json.JSONDecodeError as e:
        logger.error(f"JSON invalide: {e}")
        raise HTTPException(status_code=400, detail="Format JSON invalide")
    if not isinstance(contenu, dict):
        raise HTTPException(status_code=400, detail="Format JSON invalide")
    try:
        return schema(**{**contenu, **forces})
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "Formulaire invalide", "erreurs": erreurs_par_champ(e)},
        )


async def _lire_photo(photo: Optional[UploadFile]):
    if photo is None or not photo.filename:
        return None, None
    return await photo.read(), photo.filename


# ===============================
# INSCRIPTION PUBLIQUE
# ===============================
@router.post("/etapes/{etape}/valider", response_model=ValidationEtape)
async def valider_etape_formulaire(
    etape: int,
    data: str = Form("{}"),
    photo: UploadFile = File(None),
):
    """Valide une étape du formulaire (1 Photo, 2 Identité, 3 Contact, 4 Paiement) sans rien enregistrer."""
    try:
        contenu = json.loads(data or "{}")
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Format JSON invalide")
    return valider_etape(etape, contenu, photo_presente=bool(photo and photo.filename))


@router.post("/publique", response_model=InscriptionOut, status_code=status.HTTP_201_CREATED)
async def inscription_publique(
    data: str = Form(...),
    photo: UploadFile = File(None),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
    bucket: PhotoBucket = Depends(get_photo_bucket),
):
    """
    Auto-inscription publique
    - **data**: formulaire JSON
    - **photo**: photo du participant (obligatoire)
    """
    formulaire = _charger_formulaire(data, InscriptionPublique)
    contenu, filename = await _lire_photo(photo)
    try:
        service = InscriptionService(db, provider)
        return await service.inscrire_en_ligne(
            formulaire, formulaire.chef_quartier_id, contenu, filename, bucket, created_by="public"
        )
    except (PhotoRequiseError, PhotoUploadError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ChefQuartierNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur inscription publique: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de l'inscription")


@president_router.post("/inscriptions", response_model=InscriptionOut, status_code=status.HTTP_201_CREATED)
async def inscription_president(
    data: str = Form(...),
    photo: UploadFile = File(None),
    user: AdminUser = Depends(require_role(Role.PRESIDENT.value)),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
    bucket: PhotoBucket = Depends(get_photo_bucket),
):
    """Inscription d'un membre par son président de section."""
    if not user.chef_quartier_id:
        raise HTTPException(status_code=403, detail="Aucune section associée à ce compte président")

    formulaire = _charger_formulaire(data, InscriptionPublique, chef_quartier_id=user.chef_quartier_id)
    contenu, filename = await _lire_photo(photo)
    try:
        service = InscriptionService(db, provider)
        return await service.inscrire_en_ligne(
            formulaire, user.chef_quartier_id, contenu, filename, bucket, created_by="president"
        )
    except (PhotoRequiseError, PhotoUploadError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ChefQuartierNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur inscription président: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de l'inscription")


# ===============================
# INSCRIPTION PRÉSENTIELLE
# ===============================
@router.post("/presentielle", response_model=InscriptionOut, status_code=status.HTTP_201_CREATED)
async def inscription_presentielle(
    data: str = Form(...),
    photo: UploadFile = File(None),
    user: AdminUser = Depends(secretariat),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
    bucket: PhotoBucket = Depends(get_photo_bucket),
):
    formulaire = _charger_formulaire(data, InscriptionPresentielle)
    contenu, filename = await _lire_photo(photo)
    try:
        service = InscriptionService(db, provider)
        return await service.inscrire_presentielle(formulaire, contenu, filename, bucket, user)
    except (PhotoRequiseError, PhotoUploadError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DortoirNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DortoirCompletError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur inscription présentielle: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de l'inscription")


@router.get("/presentielle/recentes", response_model=List[InscriptionRecente])
async def inscriptions_recentes(
    user: AdminUser = Depends(secretariat),
    db: AsyncSession = Depends(get_db),
):
    """Les cinq dernières inscriptions présentielles saisies par l'utilisateur."""
    inscriptions = await InscriptionService(db).recentes_presentielles(user.id)
    return [
        InscriptionRecente(
            id=i.id,
            name=i.full_name,
            time=i.created_at,
            dortoir=i.dortoir.nom if i.dortoir else None,
        )
        for i in inscriptions
    ]


# ===============================
# LISTE & EXPORT
# ===============================
def _filtres(
    search: Optional[str] = None,
    statut: Optional[StatutInscription] = None,
    chef_quartier_id: Optional[str] = None,
    niveau_formation: Optional[NiveauFormation] = None,
    sexe: Optional[Sexe] = None,
    type_inscription: Optional[TypeInscription] = None,
) -> InscriptionFilters:
    return InscriptionFilters(
        search=search,
        statut=statut,
        chef_quartier_id=chef_quartier_id,
        niveau_formation=niveau_formation,
        sexe=sexe,
        type_inscription=type_inscription,
    )


@router.get("", response_model=List[InscriptionOut])
async def lister_inscriptions(
    filtres: InscriptionFilters = Depends(_filtres),
    user: AdminUser = Depends(lecture),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await InscriptionService(db).lister(filtres)
    except Exception as e:
        logger.error(f"Erreur liste inscriptions: {e}")
        raise HTTPException(status_code=500, detail="Erreur interne du serveur")


@router.get("/export.xlsx")
async def exporter_inscriptions(
    filtres: InscriptionFilters = Depends(_filtres),
    user: AdminUser = Depends(lecture),
    db: AsyncSession = Depends(get_db),
):
    inscriptions = await InscriptionService(db).lister(filtres)
    lignes = [InscriptionOut.model_validate(i).model_dump(mode="json") for i in inscriptions]
    contenu = exporter_inscriptions_xlsx(lignes)
    filename = f"inscriptions_sefimap_{date.today().isoformat()}.xlsx"
    return Response(
        content=contenu,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ===============================
# VALIDATION
# ===============================
@router.post("/valider-selection", response_model=ResultatValidationGroupee)
async def valider_selection(
    selection: SelectionIds,
    user: AdminUser = Depends(secretariat),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        return await InscriptionService(db, provider).valider_selection(selection.ids, user)
    except Exception as e:
        logger.error(f"❌ Erreur validation groupée: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la validation")


@router.get("/{inscription_id}", response_model=InscriptionOut)
async def obtenir_inscription(
    inscription_id: str,
    user: AdminUser = Depends(lecture),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await InscriptionService(db).obtenir(inscription_id)
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")


@router.post("/{inscription_id}/valider", response_model=InscriptionOut)
async def valider_inscription(
    inscription_id: str,
    user: AdminUser = Depends(secretariat),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        return await InscriptionService(db, provider).valider(inscription_id, user)
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")
    except (DortoirRequisError, TransitionInvalideError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur validation inscription {inscription_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la validation")


@router.post("/{inscription_id}/rejeter", response_model=InscriptionOut)
async def rejeter_inscription(
    inscription_id: str,
    user: AdminUser = Depends(secretariat),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        return await InscriptionService(db, provider).rejeter(inscription_id, user)
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")
    except TransitionInvalideError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur rejet inscription {inscription_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors du rejet")


# ===============================
# MODIFICATION & SUPPRESSION
# ===============================
@router.patch("/{inscription_id}", response_model=InscriptionOut)
async def modifier_inscription(
    inscription_id: str,
    updates: InscriptionUpdate,
    user: AdminUser = Depends(secretariat),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        return await InscriptionService(db, provider).modifier(inscription_id, updates, user)
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")
    except (DortoirNotFoundError, ChefQuartierNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DortoirCompletError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur modification inscription {inscription_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la modification")


@router.put("/{inscription_id}/dortoir", response_model=InscriptionOut)
async def attribuer_dortoir(
    inscription_id: str,
    data: AttributionDortoir,
    user: AdminUser = Depends(secretariat),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        return await InscriptionService(db, provider).attribuer_dortoir(inscription_id, data, user)
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")
    except DortoirNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DortoirCompletError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur attribution dortoir {inscription_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de l'attribution du dortoir")


@router.delete("/{inscription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def supprimer_inscription(
    inscription_id: str,
    user: AdminUser = Depends(secretariat),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
    bucket: PhotoBucket = Depends(get_photo_bucket),
):
    try:
        await InscriptionService(db, provider).supprimer(inscription_id, bucket)
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur suppression inscription {inscription_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la suppression")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
