import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from sefimap.auth.models import AdminUser, Role
from sefimap.auth.permissions import require_role
from sefimap.data.provider import DataProvider, get_data_provider
from sefimap.db.session import get_db
from sefimap.inscriptions.schemas import InscriptionOut
from sefimap.inscriptions.services import InscriptionNotFoundError
from sefimap.scientifique.models import Niveau
from sefimap.scientifique.schemas import (
    ConfigCapaciteOut,
    ConfigCapaciteUpdate,
    ListeClasse,
    NoteExamenOut,
    NotesUpdate,
    ResultatTestEntree,
    ResultatTestsLot,
    StatNiveauFormation,
    TestEntreeCreate,
    TestEntreeLot,
)
from sefimap.scientifique.services import (
    NoteExisteDejaError,
    NoteInvalideError,
    NoteNotFoundError,
    ParticipantNonEligibleError,
    ScientifiqueService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scientifique", tags=["scientifique"])

scientifique = require_role(Role.SCIENTIFIQUE.value)


# ===============================
# TEST D'ENTRÉE
# ===============================
@router.get("/participants-eligibles", response_model=List[InscriptionOut])
async def participants_eligibles(
    user: AdminUser = Depends(scientifique),
    db: AsyncSession = Depends(get_db),
):
    """Participants validés qui n'ont pas encore passé le test d'entrée."""
    return await ScientifiqueService(db).participants_eligibles()


@router.post("/test-entree", response_model=ResultatTestEntree, status_code=status.HTTP_201_CREATED)
async def enregistrer_test_entree(
    data: TestEntreeCreate,
    user: AdminUser = Depends(scientifique),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        return await ScientifiqueService(db, provider).enregistrer_test_entree(data, user)
    except InscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Inscription non trouvée")
    except NoteInvalideError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ParticipantNonEligibleError, NoteExisteDejaError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur test d'entrée {data.inscription_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de l'enregistrement du test d'entrée")


@router.post("/test-entree/lot", response_model=ResultatTestsLot)
async def enregistrer_tests_lot(
    data: TestEntreeLot,
    user: AdminUser = Depends(scientifique),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        resultats, erreurs = await ScientifiqueService(db, provider).enregistrer_tests_lot(data.notes, user)
    except Exception as e:
        logger.error(f"❌ Erreur saisie groupée des tests d'entrée: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de l'enregistrement des tests d'entrée")
    if erreurs:
        logger.warning(f"⚠️ {len(erreurs)} test(s) d'entrée non enregistré(s)")
    return ResultatTestsLot(resultats=resultats, erreurs=erreurs)


# ===============================
# NOTES
# ===============================
@router.get("/notes", response_model=List[NoteExamenOut])
async def lister_notes(
    classe_id: Optional[str] = None,
    niveau: Optional[Niveau] = None,
    user: AdminUser = Depends(scientifique),
    db: AsyncSession = Depends(get_db),
):
    return await ScientifiqueService(db).lister_notes(classe_id, niveau.value if niveau else None)


@router.patch("/notes/{note_id}", response_model=NoteExamenOut)
async def enregistrer_notes(
    note_id: str,
    data: NotesUpdate,
    user: AdminUser = Depends(scientifique),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        return await ScientifiqueService(db, provider).enregistrer_notes(note_id, data, user)
    except NoteNotFoundError:
        raise HTTPException(status_code=404, detail="Note non trouvée")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur saisie des notes {note_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de l'enregistrement des notes")


# ===============================
# CLASSES
# ===============================
@router.get("/classes", response_model=List[ListeClasse])
async def listes_classes(
    niveau: Optional[Niveau] = None,
    user: AdminUser = Depends(scientifique),
    db: AsyncSession = Depends(get_db),
):
    """Listes de classes, participants triés par rang."""
    return await ScientifiqueService(db).listes_classes(niveau.value if niveau else None)


@router.get("/config-capacites", response_model=List[ConfigCapaciteOut])
async def configs_capacite(
    user: AdminUser = Depends(scientifique),
    db: AsyncSession = Depends(get_db),
):
    return await ScientifiqueService(db).configs()


@router.put("/config-capacites/{niveau}", response_model=ConfigCapaciteOut)
async def modifier_config_capacite(
    niveau: Niveau,
    data: ConfigCapaciteUpdate,
    user: AdminUser = Depends(scientifique),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        return await ScientifiqueService(db, provider).modifier_config(niveau, data.capacite)
    except Exception as e:
        logger.error(f"❌ Erreur configuration capacité {niveau.value}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la mise à jour de la capacité")


@router.get("/niveaux-formation", response_model=List[StatNiveauFormation])
async def stats_niveaux_formation(
    user: AdminUser = Depends(require_role(Role.SCIENTIFIQUE.value, Role.SECRETAIRE.value)),
    db: AsyncSession = Depends(get_db),
):
    return await ScientifiqueService(db).stats_niveaux_formation()
