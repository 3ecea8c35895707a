import asyncio
import contextlib
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import select

from sefimap.config import settings
from sefimap.data.stats import calculer_stats, calculer_stats_scientifique
from sefimap.db.session import AsyncSessionLocal, utcnow
from sefimap.dortoirs.models import Dortoir
from sefimap.dortoirs.schemas import DortoirOut
from sefimap.inscriptions.models import ChefQuartier, Inscription
from sefimap.inscriptions.schemas import ChefQuartierOut, InscriptionOut
from sefimap.paiements.models import Paiement
from sefimap.paiements.schemas import PaiementOut
from sefimap.scientifique.models import Classe, ConfigCapaciteClasse, NoteExamen
from sefimap.scientifique.schemas import ClasseOut, ConfigCapaciteOut, NoteExamenOut

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    SYNCED = "synced"
    PENDING_WRITE = "pending_write"
    CONFLICT = "conflict"


COLLECTIONS = (
    "inscriptions",
    "chefs_quartier",
    "dortoirs",
    "paiements",
    "notes_examens",
    "classes",
    "config_capacite_classes",
)

# Marqueur d'une suppression locale en attente de confirmation
_SUPPRIME = object()


def _requetes():
    return {
        "inscriptions": (select(Inscription).order_by(Inscription.created_at.desc()), InscriptionOut),
        "chefs_quartier": (select(ChefQuartier).order_by(ChefQuartier.nom_complet), ChefQuartierOut),
        "dortoirs": (select(Dortoir).order_by(Dortoir.nom), DortoirOut),
        "paiements": (select(Paiement).order_by(Paiement.date_paiement.desc()), PaiementOut),
        "notes_examens": (select(NoteExamen).order_by(NoteExamen.created_at.desc()), NoteExamenOut),
        "classes": (select(Classe).order_by(Classe.niveau, Classe.numero), ClasseOut),
        "config_capacite_classes": (
            select(ConfigCapaciteClasse).order_by(ConfigCapaciteClasse.niveau),
            ConfigCapaciteOut,
        ),
    }


class DataProvider:
    """
    Cache des sept collections consommées par les pages d'administration.

    Chargement parallèle, rafraîchissement silencieux périodique tant qu'une
    session est ouverte, mutateurs locaux appelés après chaque écriture
    réussie, et suivi de l'état de synchronisation de chaque enregistrement
    modifié localement.
    """

    def __init__(self, session_factory=None, poll_interval: Optional[float] = None,
                 load_timeout: Optional[float] = None):
        self._session_factory = session_factory or AsyncSessionLocal
        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL_SECONDS
        self.load_timeout = load_timeout if load_timeout is not None else settings.LOAD_TIMEOUT_SECONDS

        self._is_loading = False
        self._poll_task: Optional[asyncio.Task] = None
        self._sessions: Set[str] = set()
        self.reinitialiser()

    # ───────────────────────────────
    # État
    # ───────────────────────────────
    def reinitialiser(self) -> None:
        self.collections: Dict[str, List[dict]] = {nom: [] for nom in COLLECTIONS}
        self.loading = False
        self.initial_loaded = False
        self.error: Optional[str] = None
        self.last_update: Optional[datetime] = None
        self.conflicts: List[dict] = []
        self._pending: Dict[Tuple[str, str], object] = {}
        self._etats: Dict[Tuple[str, str], SyncState] = {}
        self._recalculer()

    def _recalculer(self) -> None:
        self.stats = calculer_stats(self.collections["inscriptions"], self.collections["paiements"])
        self.stats_scientifique = calculer_stats_scientifique(
            self.collections["inscriptions"],
            self.collections["notes_examens"],
            self.collections["classes"],
        )

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def sessions_actives(self) -> int:
        return len(self._sessions)

    def snapshot(self) -> dict:
        return {
            **self.collections,
            "stats": self.stats,
            "statsScientifique": self.stats_scientifique,
            "loading": self.loading,
            "initialLoaded": self.initial_loaded,
            "error": self.error,
            "lastUpdate": self.last_update.isoformat() if self.last_update else None,
            "conflicts": list(self.conflicts),
        }

    # ───────────────────────────────
    # Chargement
    # ───────────────────────────────
    async def _fetch(self, nom: str) -> List[dict]:
        stmt, schema = _requetes()[nom]
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [schema.model_validate(obj).model_dump(mode="json") for obj in result.scalars().all()]

    async def load_all(self, silent: bool = False) -> bool:
        """Charge les sept collections en parallèle. Retourne False si l'appel a été ignoré ou a expiré."""
        if self._is_loading:
            logger.info("⏳ Chargement déjà en cours, appel ignoré")
            return False

        self._is_loading = True
        if not silent:
            self.loading = True
        debut = utcnow()
        # seules les écritures antérieures au chargement peuvent y figurer
        attendues = dict(self._pending)
        try:
            try:
                resultats = await asyncio.wait_for(
                    asyncio.gather(*(self._fetch(nom) for nom in COLLECTIONS), return_exceptions=True),
                    timeout=self.load_timeout,
                )
            except asyncio.TimeoutError:
                logger.error(f"❌ Chargement des données expiré après {self.load_timeout}s")
                self.error = "Le chargement des données a pris trop de temps. Vérifiez votre connexion."
                return False

            nouvelles: Dict[str, List[dict]] = {}
            echecs: List[str] = []
            for nom, resultat in zip(COLLECTIONS, resultats):
                if isinstance(resultat, BaseException):
                    logger.error(f"❌ Erreur chargement {nom}: {resultat}")
                    echecs.append(nom)
                    nouvelles[nom] = []
                else:
                    nouvelles[nom] = resultat

            self._reconcilier(nouvelles, set(echecs), attendues)
            self._reappliquer(nouvelles, set(echecs))
            self.collections = nouvelles
            self.last_update = utcnow()
            self.initial_loaded = True
            self.error = f"Erreur lors du chargement des données ({', '.join(echecs)})" if echecs else None
            self._recalculer()

            duree = (self.last_update - debut).total_seconds() * 1000
            logger.info(
                f"✅ Données chargées en {duree:.0f}ms "
                + ", ".join(f"{nom}={len(items)}" for nom, items in nouvelles.items())
            )
            return True
        finally:
            self._is_loading = False
            if not silent:
                self.loading = False

    async def refresh(self) -> bool:
        return await self.load_all(silent=False)

    # ───────────────────────────────
    # Sessions et rafraîchissement périodique
    # ───────────────────────────────
    async def ouvrir_session(self, session_id: str, user_id: Optional[str] = None) -> None:
        """Une session par connexion : un même compte peut en ouvrir plusieurs."""
        premiere = not self._sessions
        self._sessions.add(session_id)
        if premiere:
            logger.info(f"Première session ouverte ({user_id or 'inconnu'}), chargement initial")
            await self.load_all()
            self._demarrer_polling()

    async def fermer_session(self, session_id: str, user_id: Optional[str] = None) -> None:
        self._sessions.discard(session_id)
        if self._sessions:
            logger.info(f"Session fermée ({user_id or 'inconnu'}), {len(self._sessions)} encore active(s)")
        else:
            logger.info("Plus aucune session active, nettoyage du cache")
            await self._arreter_polling()
            self.reinitialiser()

    async def close(self) -> None:
        self._sessions.clear()
        await self._arreter_polling()
        self.reinitialiser()

    def _demarrer_polling(self) -> None:
        if not self.polling:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def _arreter_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            logger.info("🔄 Rafraîchissement silencieux des données")
            try:
                await self.load_all(silent=True)
            except Exception as e:
                logger.error(f"❌ Erreur pendant le rafraîchissement périodique: {e}")

    # ───────────────────────────────
    # Synchronisation des écritures locales
    # ───────────────────────────────
    def _marquer(self, collection: str, record_id: str, patch) -> None:
        cle = (collection, record_id)
        precedent = self._pending.get(cle)
        if isinstance(precedent, dict) and isinstance(patch, dict):
            patch = {**precedent, **patch}
        self._pending[cle] = patch
        self._etats[cle] = SyncState.PENDING_WRITE

    def _reconcilier(self, nouvelles: Dict[str, List[dict]], echecs: Set[str],
                     attendues: Dict[Tuple[str, str], object]) -> None:
        """
        Compare le résultat du chargement aux écritures locales en attente.

        Une écriture faite pendant le chargement (ou complétée depuis) reste en
        attente jusqu'au chargement suivant.
        """
        for cle, patch in attendues.items():
            collection, record_id = cle
            if collection in echecs or self._pending.get(cle) is not patch:
                continue
            recu = next((r for r in nouvelles[collection] if r.get("id") == record_id), None)
            if patch is _SUPPRIME:
                conforme = recu is None
            else:
                conforme = recu is not None and all(recu.get(k) == v for k, v in patch.items())

            del self._pending[cle]
            if conforme:
                self._etats.pop(cle, None)
                continue

            self._etats[cle] = SyncState.CONFLICT
            self.conflicts.append({
                "collection": collection,
                "id": record_id,
                "attendu": None if patch is _SUPPRIME else patch,
                "recu": recu,
            })
            logger.warning(f"⚠️ Conflit de synchronisation sur {collection}/{record_id}")

    def _reappliquer(self, nouvelles: Dict[str, List[dict]], echecs: Set[str]) -> None:
        for (collection, record_id), patch in self._pending.items():
            if collection in echecs:
                continue
            items = nouvelles[collection]
            if patch is _SUPPRIME:
                nouvelles[collection] = [item for item in items if item.get("id") != record_id]
                continue
            index = next((i for i, item in enumerate(items) if item.get("id") == record_id), None)
            if index is None:
                items.insert(0, dict(patch))
            else:
                items[index] = {**items[index], **patch}

    def sync_state(self, collection: str, record_id: str) -> SyncState:
        return self._etats.get((collection, record_id), SyncState.SYNCED)

    def acquitter_conflits(self) -> List[dict]:
        conflits, self.conflicts = self.conflicts, []
        for conflit in conflits:
            self._etats.pop((conflit["collection"], conflit["id"]), None)
        return conflits

    # ───────────────────────────────
    # Mutateurs locaux
    # ───────────────────────────────
    def update_local(self, collection: str, record_id: str, updates: dict) -> Optional[dict]:
        items = self.collections[collection]
        for index, item in enumerate(items):
            if item.get("id") == record_id:
                items[index] = {**item, **updates}
                self._marquer(collection, record_id, dict(updates))
                self.last_update = utcnow()
                self._recalculer()
                return items[index]
        return None

    def add_local(self, collection: str, record: dict, prepend: bool = True) -> dict:
        record_id = record["id"]
        if any(item.get("id") == record_id for item in self.collections[collection]):
            return self.update_local(collection, record_id, record)

        if prepend:
            self.collections[collection].insert(0, record)
        else:
            self.collections[collection].append(record)
        self._marquer(collection, record_id, dict(record))
        self.last_update = utcnow()
        self._recalculer()
        return record

    def delete_local(self, collection: str, record_id: str) -> bool:
        items = self.collections[collection]
        restants = [item for item in items if item.get("id") != record_id]
        if len(restants) == len(items):
            return False
        self.collections[collection] = restants
        self._marquer(collection, record_id, _SUPPRIME)
        self.last_update = utcnow()
        self._recalculer()
        return True

    # Raccourcis par collection
    def add_inscription_local(self, inscription: dict) -> dict:
        return self.add_local("inscriptions", inscription)

    def update_inscription_local(self, inscription_id: str, updates: dict) -> Optional[dict]:
        return self.update_local("inscriptions", inscription_id, updates)

    def delete_inscription_local(self, inscription_id: str) -> bool:
        removed = self.delete_local("inscriptions", inscription_id)
        # Les paiements et notes liés disparaissent avec l'inscription
        for collection in ("paiements", "notes_examens"):
            self.collections[collection] = [
                item for item in self.collections[collection] if item.get("inscription_id") != inscription_id
            ]
        self._recalculer()
        return removed

    def add_paiement_local(self, paiement: dict) -> dict:
        return self.add_local("paiements", paiement)

    def update_paiement_local(self, paiement_id: str, updates: dict) -> Optional[dict]:
        return self.update_local("paiements", paiement_id, updates)

    def add_dortoir_local(self, dortoir: dict) -> dict:
        record = self.add_local("dortoirs", dortoir, prepend=False)
        self.collections["dortoirs"].sort(key=lambda d: d.get("nom") or "")
        return record

    def update_dortoir_local(self, dortoir_id: str, updates: dict) -> Optional[dict]:
        return self.update_local("dortoirs", dortoir_id, updates)

    def delete_dortoir_local(self, dortoir_id: str) -> bool:
        return self.delete_local("dortoirs", dortoir_id)

    def add_note_local(self, note: dict) -> dict:
        return self.add_local("notes_examens", note)

    def update_note_local(self, note_id: str, updates: dict) -> Optional[dict]:
        return self.update_local("notes_examens", note_id, updates)

    def add_classe_local(self, classe: dict) -> dict:
        record = self.add_local("classes", classe, prepend=False)
        self.collections["classes"].sort(key=lambda c: (c.get("niveau") or "", c.get("numero") or 0))
        return record

    def update_config_local(self, config_id: str, updates: dict) -> Optional[dict]:
        return self.update_local("config_capacite_classes", config_id, updates)


data_provider = DataProvider()


def get_data_provider() -> DataProvider:
    return data_provider
