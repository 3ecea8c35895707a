import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from sefimap.auth.models import AdminUser, Role
from sefimap.auth.permissions import require_role
from sefimap.data.provider import DataProvider, get_data_provider
from sefimap.db.session import get_db
from sefimap.inscriptions.schemas import InscriptionOut
from sefimap.inscriptions.services import InscriptionNotFoundError
from sefimap.paiements.models import StatutLignePaiement
from sefimap.paiements.schemas import (
    HistoriquePaiements,
    PaiementCreate,
    PaiementOut,
    PaiementsPresident,
    RefusPaiement,
    ResumePaiements,
    VersementResultat,
)
from sefimap.paiements.services import (
    ConfirmationRequiseError,
    HorsSectionError,
    MontantInvalideError,
    PaiementService,
)
from sefimap.utils.exports import XLSX_MEDIA_TYPE, exporter_paiements_xlsx

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/paiements", tags=["paiements"])

finance = require_role(Role.FINANCIER.value)
encaissement = require_role(Role.FINANCIER.value, Role.PRESIDENT.value, Role.SECRETAIRE.value)
gestion = require_role(Role.FINANCIER.value, Role.SECRETAIRE.value)


# ===============================
# LISTE & EXPORT
# ===============================
@router.get("", response_model=List[PaiementOut])
async def lister_paiements(
    statut: Optional[StatutLignePaiement] = None,
    user: AdminUser = Depends(gestion),
    db: AsyncSession = Depends(get_db),
):
    return await PaiementService(db).lister(statut.value if statut else None)


@router.get("/export.xlsx")
async def exporter_paiements(
    statut: Optional[StatutLignePaiement] = None,
    user: AdminUser = Depends(gestion),
    db: AsyncSession = Depends(get_db),
):
    paiements = await PaiementService(db).lister(statut.value if statut else None)
    contenu = exporter_paiements_xlsx([PaiementOut.model_validate(p).model_dump(mode="json") for p in paiements])
    filename = f"paiements_sefimap_{date.today().isoformat()}.xlsx"
    return Response(
        content=contenu,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/resume", response_model=ResumePaiements)
async def resume_paiements(
    user: AdminUser = Depends(gestion),
    db: AsyncSession = Depends(get_db),
):
    """Totaux collectés et restants, avec le détail par président de section."""
    try:
        return await PaiementService(db).resume()
    except Exception as e:
        logger.error(f"Erreur résumé paiements: {e}")
        raise HTTPException(status_code=500, detail="Erreur interne du serveur")


# ===============================
# PRÉSIDENTS DE SECTION
# ===============================
@router.get("/president", response_model=PaiementsPresident)
async def mes_paiements(
    filtre: Optional[str] = Query(None, pattern="^(solde|non_solde)$"),
    user: AdminUser = Depends(require_role(Role.PRESIDENT.value)),
    db: AsyncSession = Depends(get_db),
):
    """Suivi des paiements des membres du président connecté."""
    if not user.chef_quartier_id:
        raise HTTPException(status_code=403, detail="Aucune section associée à ce compte président")
    return await PaiementService(db).paiements_president(user.chef_quartier_id, filtre)


@router.get("/president/{chef_quartier_id}", response_model=PaiementsPresident)
async def paiements_president(
    chef_quartier_id: str,
    filtre: Optional[str] = Query(None, pattern="^(solde|non_solde)$"),
    user: AdminUser = Depends(gestion),
    db: AsyncSession = Depends(get_db),
):
    return await PaiementService(db).paiements_president(chef_quartier_id, filtre)


# ===============================
# VALIDATION FINANCIÈRE
# ===============================
@router.get("/en-attente", response_model=List[InscriptionOut])
async def paiements_en_attente(
    user: AdminUser = Depends(finance),
    db: AsyncSession = Depends(get_db),
):
    return await PaiementService(db).en_attente_validation()


@router.post("/inscriptions/{inscription_id}/valider", response_model=InscriptionOut)
async def valider_paiement(
    inscription_id: str,
    user: AdminUser = Depends(finance),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        return await PaiementService(db, provider).valider_financier(inscription_id, user)
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur validation financière {inscription_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la validation du paiement")


@router.post("/inscriptions/{inscription_id}/refuser", response_model=InscriptionOut)
async def refuser_paiement(
    inscription_id: str,
    data: RefusPaiement,
    user: AdminUser = Depends(finance),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    """Refus d'un paiement : la confirmation explicite est obligatoire."""
    try:
        return await PaiementService(db, provider).refuser(inscription_id, user, data.confirmation)
    except ConfirmationRequiseError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur refus paiement {inscription_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors du refus du paiement")


# ===============================
# VERSEMENTS
# ===============================
@router.post("/inscriptions/{inscription_id}", response_model=VersementResultat)
async def ajouter_paiement(
    inscription_id: str,
    data: PaiementCreate,
    user: AdminUser = Depends(encaissement),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        paiement, inscription = await PaiementService(db, provider).ajouter_paiement(inscription_id, data, user)
    except MontantInvalideError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HorsSectionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur ajout paiement {inscription_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de l'enregistrement du paiement")
    return VersementResultat(
        paiement=PaiementOut.model_validate(paiement),
        inscription=InscriptionOut.model_validate(inscription),
    )


@router.get("/inscriptions/{inscription_id}/historique", response_model=HistoriquePaiements)
async def historique_paiements(
    inscription_id: str,
    user: AdminUser = Depends(encaissement),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await PaiementService(db).historique(inscription_id, user)
    except HorsSectionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")
