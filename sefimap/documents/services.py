import logging
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sefimap.inscriptions.models import Inscription, StatutInscription
from sefimap.inscriptions.schemas import InscriptionOut
from sefimap.inscriptions.services import InscriptionNotFoundError
from sefimap.scientifique.models import Classe, NoteExamen
from sefimap.scientifique.schemas import NoteExamenOut
from sefimap.scientifique.services import NoteNotFoundError, calculer_rang
from sefimap.utils.storage import PhotoBucket

logger = logging.getLogger(__name__)


class AucunDocumentError(Exception):
    pass


class DocumentService:
    """Prépare les données des badges et bulletins (photos, rangs, effectifs)."""

    def __init__(self, db: AsyncSession, bucket: PhotoBucket):
        self.db = db
        self.bucket = bucket

    # ───────────────────────────────
    # Badges
    # ───────────────────────────────
    async def _avec_photo(self, inscription: Inscription) -> Tuple[dict, Optional[bytes]]:
        record = InscriptionOut.model_validate(inscription).model_dump(mode="json")
        return record, await self.bucket.read_photo(inscription.photo_url)

    async def badge(self, inscription_id: str) -> Tuple[dict, Optional[bytes]]:
        inscription = await self.db.get(Inscription, inscription_id)
        if not inscription:
            raise InscriptionNotFoundError(f"Inscription introuvable : {inscription_id}")
        return await self._avec_photo(inscription)

    async def badges(self, ids: Optional[List[str]] = None) -> List[Tuple[dict, Optional[bytes]]]:
        """Badges des inscriptions sélectionnées, ou de toutes les inscriptions validées."""
        query = select(Inscription).order_by(Inscription.nom, Inscription.prenom)
        if ids:
            query = query.where(Inscription.id.in_(ids))
        else:
            query = query.where(Inscription.statut == StatutInscription.VALIDE.value)
        inscriptions = (await self.db.execute(query)).scalars().all()
        if not inscriptions:
            raise AucunDocumentError("Aucun participant à imprimer")
        return [await self._avec_photo(i) for i in inscriptions]

    # ───────────────────────────────
    # Bulletins
    # ───────────────────────────────
    async def _notes_classe(self, classe_id: Optional[str]) -> List[NoteExamen]:
        if not classe_id:
            return []
        result = await self.db.execute(
            select(NoteExamen).where(NoteExamen.classe_id == classe_id).order_by(NoteExamen.created_at)
        )
        return list(result.scalars().all())

    async def bulletin(self, note_id: str) -> Tuple[dict, Optional[int], int]:
        note = await self.db.get(NoteExamen, note_id)
        if not note:
            raise NoteNotFoundError(f"Note introuvable : {note_id}")
        pairs = await self._notes_classe(note.classe_id) or [note]
        return NoteExamenOut.model_validate(note).model_dump(mode="json"), calculer_rang(pairs, note.id), len(pairs)

    async def bulletins(self, classe_id: Optional[str] = None) -> Tuple[List[Tuple[dict, Optional[int], int]], Optional[str]]:
        """Bulletins d'une classe, ou de toutes les notes ayant une moyenne."""
        query = select(NoteExamen).where(NoteExamen.moyenne.is_not(None)).order_by(NoteExamen.created_at)
        classe_nom = None
        if classe_id:
            classe = await self.db.get(Classe, classe_id)
            classe_nom = classe.nom if classe else None
            query = query.where(NoteExamen.classe_id == classe_id)
        notes = list((await self.db.execute(query)).scalars().all())
        if not notes:
            raise AucunDocumentError("Aucune note avec moyenne à imprimer")

        par_classe = {}
        bulletins = []
        for note in notes:
            if note.classe_id not in par_classe:
                par_classe[note.classe_id] = await self._notes_classe(note.classe_id) or [note]
            pairs = par_classe[note.classe_id]
            bulletins.append((
                NoteExamenOut.model_validate(note).model_dump(mode="json"),
                calculer_rang(pairs, note.id),
                len(pairs),
            ))
        bulletins.sort(key=lambda b: ((b[0].get("classe") or {}).get("nom") or "", b[1] or 0))
        return bulletins, classe_nom
