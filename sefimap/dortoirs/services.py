import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sefimap.data.provider import DataProvider
from sefimap.db.views import vue_statistiques_dortoirs
from sefimap.dortoirs.models import Dortoir
from sefimap.dortoirs.schemas import (
    DortoirCreate,
    DortoirOut,
    DortoirStatistiques,
    DortoirUpdate,
    ResumeDortoirs,
)
from sefimap.inscriptions.models import Inscription

logger = logging.getLogger(__name__)


class DortoirNotFoundError(Exception):
    pass


class DortoirCompletError(Exception):
    pass


class DortoirOccupeError(Exception):
    pass


class DortoirExisteError(Exception):
    pass


class DortoirService:
    def __init__(self, db: AsyncSession, provider: Optional[DataProvider] = None):
        self.db = db
        self.provider = provider

    async def get_dortoir(self, dortoir_id: str) -> Dortoir:
        dortoir = await self.db.get(Dortoir, dortoir_id)
        if not dortoir:
            raise DortoirNotFoundError(f"Dortoir introuvable : {dortoir_id}")
        return dortoir

    # ───────────────────────────────
    # Statistiques (vue calculée par le backend)
    # ───────────────────────────────
    async def statistiques(self) -> List[DortoirStatistiques]:
        result = await self.db.execute(
            select(vue_statistiques_dortoirs).order_by(vue_statistiques_dortoirs.c.nom)
        )
        return [DortoirStatistiques.model_validate(dict(row)) for row in result.mappings().all()]

    async def statistiques_dortoir(self, dortoir_id: str) -> Optional[DortoirStatistiques]:
        result = await self.db.execute(
            select(vue_statistiques_dortoirs).where(vue_statistiques_dortoirs.c.id == dortoir_id)
        )
        row = result.mappings().first()
        return DortoirStatistiques.model_validate(dict(row)) if row else None

    async def resume(self) -> ResumeDortoirs:
        stats = await self.statistiques()
        capacite_totale = sum(s.capacite for s in stats)
        total_inscrits = sum(s.nombre_inscrits for s in stats)
        taux = round(total_inscrits * 100 / capacite_totale, 1) if capacite_totale else 0
        return ResumeDortoirs(
            dortoirs=stats,
            capacite_totale=capacite_totale,
            total_inscrits=total_inscrits,
            taux_remplissage_global=taux,
        )

    async def verifier_capacite(self, dortoir_id: str, dortoir_actuel_id: Optional[str] = None) -> Dortoir:
        """
        Refuse l'attribution si l'occupation lue dans la vue atteint la capacité.

        Réattribuer le dortoir déjà occupé par l'inscription est toujours accepté.
        Vérification indicative : deux administrateurs simultanés peuvent la passer tous les deux.
        """
        dortoir = await self.get_dortoir(dortoir_id)
        if dortoir_actuel_id == dortoir_id:
            return dortoir

        stats = await self.statistiques_dortoir(dortoir_id)
        occupation = stats.nombre_inscrits if stats else 0
        capacite = stats.capacite if stats else dortoir.capacite
        if occupation >= capacite:
            logger.warning(f"⛔ Dortoir complet : {dortoir.nom} ({occupation}/{capacite})")
            raise DortoirCompletError(
                f"Le dortoir {dortoir.nom} est complet ({occupation}/{capacite}). Veuillez en choisir un autre."
            )
        return dortoir

    # ───────────────────────────────
    # Configuration des dortoirs
    # ───────────────────────────────
    async def _commit(self, nom: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DortoirExisteError(f"Un dortoir nommé {nom} existe déjà.")

    async def creer(self, data: DortoirCreate) -> Dortoir:
        dortoir = Dortoir(nom=data.nom.strip(), capacite=data.capacite, description=data.description)
        self.db.add(dortoir)
        await self._commit(dortoir.nom)
        await self.db.refresh(dortoir)
        logger.info(f"✅ Dortoir créé : {dortoir.nom} ({dortoir.capacite} places)")

        if self.provider:
            self.provider.add_dortoir_local(DortoirOut.model_validate(dortoir).model_dump(mode="json"))
        return dortoir

    async def modifier(self, dortoir_id: str, data: DortoirUpdate) -> Dortoir:
        dortoir = await self.get_dortoir(dortoir_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(dortoir, field, value)
        await self._commit(dortoir.nom)
        await self.db.refresh(dortoir)
        logger.info(f"Dortoir mis à jour : {dortoir.nom}")

        if self.provider:
            self.provider.update_dortoir_local(dortoir.id, DortoirOut.model_validate(dortoir).model_dump(mode="json"))
        return dortoir

    async def supprimer(self, dortoir_id: str) -> None:
        dortoir = await self.get_dortoir(dortoir_id)
        occupants = await self.db.scalar(
            select(func.count()).select_from(Inscription).where(Inscription.dortoir_id == dortoir_id)
        )
        if occupants:
            raise DortoirOccupeError(
                f"Impossible de supprimer le dortoir {dortoir.nom} : {occupants} participant(s) y sont affectés."
            )
        await self.db.delete(dortoir)
        await self.db.commit()
        logger.info(f"🗑️ Dortoir supprimé : {dortoir.nom}")

        if self.provider:
            self.provider.delete_dortoir_local(dortoir_id)
