import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from sefimap.auth.models import AdminUser, Role
from sefimap.auth.dependencies import get_current_user
from sefimap.auth.permissions import require_role
from sefimap.data.provider import DataProvider, get_data_provider
from sefimap.db.session import get_db
from sefimap.dortoirs.schemas import (
    DortoirCreate,
    DortoirOut,
    DortoirStatistiques,
    DortoirUpdate,
    ResumeDortoirs,
)
from sefimap.dortoirs.services import (
    DortoirExisteError,
    DortoirNotFoundError,
    DortoirOccupeError,
    DortoirService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dortoirs", tags=["dortoirs"])

secretariat = require_role(Role.SECRETAIRE.value)


# 📊 Occupation lue dans vue_statistiques_dortoirs
@router.get("/statistiques", response_model=List[DortoirStatistiques])
async def statistiques_dortoirs(
    user: AdminUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await DortoirService(db).statistiques()


@router.get("/resume", response_model=ResumeDortoirs)
async def resume_dortoirs(
    user: AdminUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Capacité totale, inscrits et taux de remplissage global."""
    try:
        return await DortoirService(db).resume()
    except Exception as e:
        logger.error(f"Erreur résumé dortoirs: {e}")
        raise HTTPException(status_code=500, detail="Erreur interne du serveur")


@router.get("/{dortoir_id}", response_model=DortoirOut)
async def obtenir_dortoir(
    dortoir_id: str,
    user: AdminUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await DortoirService(db).get_dortoir(dortoir_id)
    except DortoirNotFoundError:
        raise HTTPException(status_code=404, detail="Dortoir non trouvé")


@router.post("", response_model=DortoirOut, status_code=status.HTTP_201_CREATED)
async def creer_dortoir(
    data: DortoirCreate,
    user: AdminUser = Depends(secretariat),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        return await DortoirService(db, provider).creer(data)
    except DortoirExisteError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur création dortoir: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la création du dortoir")


@router.put("/{dortoir_id}", response_model=DortoirOut)
async def modifier_dortoir(
    dortoir_id: str,
    data: DortoirUpdate,
    user: AdminUser = Depends(secretariat),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        return await DortoirService(db, provider).modifier(dortoir_id, data)
    except DortoirNotFoundError:
        raise HTTPException(status_code=404, detail="Dortoir non trouvé")
    except DortoirExisteError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur modification dortoir {dortoir_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la modification du dortoir")


@router.delete("/{dortoir_id}", status_code=status.HTTP_204_NO_CONTENT)
async def supprimer_dortoir(
    dortoir_id: str,
    user: AdminUser = Depends(secretariat),
    db: AsyncSession = Depends(get_db),
    provider: DataProvider = Depends(get_data_provider),
):
    try:
        await DortoirService(db, provider).supprimer(dortoir_id)
    except DortoirNotFoundError:
        raise HTTPException(status_code=404, detail="Dortoir non trouvé")
    except DortoirOccupeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Erreur suppression dortoir {dortoir_id}: {e}")
        raise HTTPException(status_code=500, detail="Erreur lors de la suppression du dortoir")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
