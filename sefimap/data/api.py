import logging

from fastapi import APIRouter, Depends

from sefimap.auth.dependencies import get_current_user
from sefimap.auth.models import AdminUser
from sefimap.data.provider import DataProvider, get_data_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/data", tags=["data"])


@router.get("")
async def snapshot(
    user: AdminUser = Depends(get_current_user),
    provider: DataProvider = Depends(get_data_provider),
):
    """Collections en cache, statistiques et état du chargement."""
    return provider.snapshot()


@router.post("/refresh")
async def refresh(
    user: AdminUser = Depends(get_current_user),
    provider: DataProvider = Depends(get_data_provider),
):
    lance = await provider.refresh()
    if not lance:
        logger.info("🔄 Rafraîchissement ignoré : chargement déjà en cours")
    return {
        "rafraichi": lance,
        "error": provider.error,
        "lastUpdate": provider.last_update.isoformat() if provider.last_update else None,
    }


@router.get("/stats")
async def stats(
    user: AdminUser = Depends(get_current_user),
    provider: DataProvider = Depends(get_data_provider),
):
    return {"stats": provider.stats, "statsScientifique": provider.stats_scientifique}


@router.post("/conflits/acquitter")
async def acquitter_conflits(
    user: AdminUser = Depends(get_current_user),
    provider: DataProvider = Depends(get_data_provider),
):
    """Vide la liste des conflits de synchronisation après consultation."""
    conflits = provider.acquitter_conflits()
    return {"acquittes": len(conflits), "conflits": conflits}
