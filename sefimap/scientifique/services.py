import logging
from typing import Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sefimap.auth.models import AdminUser
from sefimap.config import settings
from sefimap.data.provider import DataProvider
from sefimap.db.session import utcnow
from sefimap.db.views import vue_statistiques_niveaux_formation
from sefimap.inscriptions.models import Inscription, StatutInscription
from sefimap.inscriptions.services import InscriptionNotFoundError
from sefimap.scientifique.models import NIVEAU_LABELS, Classe, ConfigCapaciteClasse, Niveau, NoteExamen
from sefimap.scientifique.schemas import (
    ClasseOut,
    ConfigCapaciteOut,
    LigneClassement,
    ListeClasse,
    NoteExamenOut,
    NotesUpdate,
    ResultatTestEntree,
    StatNiveauFormation,
    TestEntreeCreate,
)

logger = logging.getLogger(__name__)

NOTE_MIN = 0.0
NOTE_MAX = 20.0


class NoteInvalideError(Exception):
    pass


class NoteExisteDejaError(Exception):
    pass


class NoteNotFoundError(Exception):
    pass


class ParticipantNonEligibleError(Exception):
    pass


# ───────────────────────────────
# Règles de notation
# ───────────────────────────────
def niveau_pour_note(note: float) -> str:
    """Niveau attribué d'après la note du test d'entrée (sur 20)."""
    if note is None or note < NOTE_MIN or note > NOTE_MAX:
        raise NoteInvalideError("La note doit être comprise entre 0 et 20.")
    if note <= 5:
        return Niveau.NIVEAU_1.value
    if note <= 10:
        return Niveau.NIVEAU_2.value
    if note <= 14:
        return Niveau.NIVEAU_3.value
    return Niveau.NIVEAU_SUPERIEUR.value


def borner_note(valeur: Optional[float]) -> Optional[float]:
    if valeur is None:
        return None
    return min(NOTE_MAX, max(NOTE_MIN, float(valeur)))


def moyenne_apercu(note_entree, note_cahiers, note_conduite, note_sortie) -> Optional[float]:
    """Aperçu de la moyenne ; la valeur de référence est calculée par le backend."""
    notes = (note_entree, note_cahiers, note_conduite, note_sortie)
    if any(n is None for n in notes):
        return None
    return round(sum(notes) / 4, 2)


def _valeur(note: Union[dict, object], champ: str):
    if isinstance(note, dict):
        return note.get(champ)
    return getattr(note, champ, None)


def calculer_rang(notes: Sequence[Union[dict, object]], note_id: str) -> Optional[int]:
    """
    Rang (1 = meilleur) d'une note parmi celles de la même classe ayant une moyenne.

    Tri stable : à moyenne égale, l'ordre de la liste départage.
    """
    cible = next((n for n in notes if _valeur(n, "id") == note_id), None)
    if cible is None or _valeur(cible, "moyenne") is None:
        return None

    classe_id = _valeur(cible, "classe_id")
    pairs = [n for n in notes if _valeur(n, "classe_id") == classe_id and _valeur(n, "moyenne") is not None]
    pairs = sorted(pairs, key=lambda n: _valeur(n, "moyenne"), reverse=True)
    for index, note in enumerate(pairs):
        if _valeur(note, "id") == note_id:
            return index + 1
    return None


def format_rang(rang: Optional[int]) -> str:
    if not rang:
        return "-"
    return "1er" if rang == 1 else f"{rang}ème"


def appreciation(moyenne: Optional[float]) -> str:
    if moyenne is None:
        return "-"
    if moyenne >= 18:
        return "Excellent"
    if moyenne >= 16:
        return "Très Bien"
    if moyenne >= 14:
        return "Bien"
    if moyenne >= 12:
        return "Assez Bien"
    if moyenne >= 10:
        return "Passable"
    return "Insuffisant"


def observation(note: Optional[float]) -> str:
    if note is None:
        return "-"
    return "Acquis" if note >= 10 else "À revoir"


def nom_classe(niveau: str, numero: int) -> str:
    return f"{NIVEAU_LABELS.get(niveau, niveau)} - Classe {numero}"


class ScientifiqueService:
    def __init__(self, db: AsyncSession, provider: Optional[DataProvider] = None):
        self.db = db
        self.provider = provider

    async def _note(self, note_id: str) -> NoteExamen:
        result = await self.db.execute(
            select(NoteExamen).where(NoteExamen.id == note_id).execution_options(populate_existing=True)
        )
        note = result.scalars().first()
        if not note:
            raise NoteNotFoundError(f"Note introuvable : {note_id}")
        return note

    # ───────────────────────────────
    # Test d'entrée
    # ───────────────────────────────
    async def participants_eligibles(self) -> List[Inscription]:
        """Inscriptions validées sans note ; celles des présidents doivent avoir terminé leur parcours."""
        deja_notes = select(NoteExamen.inscription_id)
        result = await self.db.execute(
            select(Inscription)
            .where(
                Inscription.statut == StatutInscription.VALIDE.value,
                Inscription.id.not_in(deja_notes),
            )
            .order_by(Inscription.nom, Inscription.prenom)
        )
        return [
            i for i in result.scalars().all()
            if i.created_by != "president" or i.workflow_status == "completed"
        ]

    async def capacite_niveau(self, niveau: str) -> int:
        config = await self.db.scalar(select(ConfigCapaciteClasse).where(ConfigCapaciteClasse.niveau == niveau))
        return config.capacite if config and config.capacite else settings.DEFAULT_CLASS_CAPACITY

    async def effectif(self, classe_id: str) -> int:
        return await self.db.scalar(
            select(func.count()).select_from(NoteExamen).where(NoteExamen.classe_id == classe_id)
        ) or 0

    async def trouver_ou_creer_classe(self, niveau: str) -> Tuple[Classe, bool]:
        """Première classe du niveau ayant de la place, sinon une nouvelle classe numérotée à la suite."""
        result = await self.db.execute(
            select(Classe).where(Classe.niveau == niveau).order_by(Classe.numero)
        )
        classes = list(result.scalars().all())
        for classe in classes:
            if await self.effectif(classe.id) < classe.capacite:
                return classe, False

        numero = max((c.numero for c in classes), default=0) + 1
        classe = Classe(
            nom=nom_classe(niveau, numero),
            niveau=niveau,
            numero=numero,
            capacite=await self.capacite_niveau(niveau),
        )
        self.db.add(classe)
        await self.db.flush()
        logger.info(f"🏫 Nouvelle classe créée : {classe.nom} ({classe.capacite} places)")
        return classe, True

    async def enregistrer_test_entree(self, data: TestEntreeCreate, user: AdminUser) -> ResultatTestEntree:
        inscription = await self.db.get(Inscription, data.inscription_id)
        if not inscription:
            raise InscriptionNotFoundError(f"Inscription introuvable : {data.inscription_id}")
        if inscription.statut != StatutInscription.VALIDE.value:
            raise ParticipantNonEligibleError("Seuls les participants validés peuvent passer le test d'entrée.")

        existante = await self.db.scalar(
            select(NoteExamen.id).where(NoteExamen.inscription_id == data.inscription_id)
        )
        if existante:
            raise NoteExisteDejaError("Ce participant a déjà une note de test d'entrée.")

        niveau = niveau_pour_note(data.note_entree)
        try:
            classe, creee = await self.trouver_ou_creer_classe(niveau)
            note = NoteExamen(
                inscription_id=data.inscription_id,
                classe_id=classe.id,
                note_entree=data.note_entree,
                niveau_attribue=niveau,
                saisi_par=user.id,
            )
            self.db.add(note)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        note = await self._note(note.id)
        classe_out = ClasseOut.model_validate(note.classe)
        note_out = NoteExamenOut.model_validate(note)
        if self.provider:
            if creee:
                self.provider.add_classe_local(classe_out.model_dump(mode="json"))
            self.provider.add_note_local(note_out.model_dump(mode="json"))

        logger.info(
            f"✅ Test d'entrée : {inscription.full_name} -> {data.note_entree}/20, {niveau}, {classe_out.nom}"
        )
        return ResultatTestEntree(note=note_out, classe=classe_out, classe_creee=creee)

    async def enregistrer_tests_lot(self, notes: List[TestEntreeCreate], user: AdminUser):
        resultats: List[ResultatTestEntree] = []
        erreurs: Dict[str, str] = {}
        for data in notes:
            try:
                resultats.append(await self.enregistrer_test_entree(data, user))
            except (InscriptionNotFoundError, ParticipantNonEligibleError,
                    NoteExisteDejaError, NoteInvalideError) as e:
                erreurs[data.inscription_id] = str(e)
        return resultats, erreurs

    # ───────────────────────────────
    # Saisie des notes
    # ───────────────────────────────
    async def enregistrer_notes(self, note_id: str, data: NotesUpdate, user: AdminUser) -> NoteExamen:
        """
        Notes de cahiers, conduite et sortie, ramenées entre 0 et 20.

        La note de conduite reprend celle des cahiers sauf si elle est fournie explicitement.
        """
        note = await self._note(note_id)
        champs = data.model_dump(exclude_unset=True)
        updates = {champ: borner_note(valeur) for champ, valeur in champs.items() if valeur is not None}

        if "note_cahiers" in updates and "note_conduite" not in champs:
            updates["note_conduite"] = updates["note_cahiers"]

        if not updates:
            return note

        for champ, valeur in updates.items():
            setattr(note, champ, valeur)
        note.updated_at = utcnow()
        await self.db.commit()

        note = await self._note(note_id)
        if self.provider:
            self.provider.update_note_local(note.id, NoteExamenOut.model_validate(note).model_dump(mode="json"))
        logger.info(f"📝 Notes enregistrées pour {note_id} par {user.email} : {updates}")
        return note

    async def lister_notes(self, classe_id: Optional[str] = None, niveau: Optional[str] = None) -> List[NoteExamen]:
        query = select(NoteExamen)
        if classe_id:
            query = query.where(NoteExamen.classe_id == classe_id)
        if niveau:
            query = query.where(NoteExamen.niveau_attribue == niveau)
        result = await self.db.execute(query.order_by(NoteExamen.created_at))
        return list(result.scalars().all())

    # ───────────────────────────────
    # Classes et classements
    # ───────────────────────────────
    async def listes_classes(self, niveau: Optional[str] = None) -> List[ListeClasse]:
        query = select(Classe).order_by(Classe.niveau, Classe.numero)
        if niveau:
            query = query.where(Classe.niveau == niveau)
        classes = list((await self.db.execute(query)).scalars().all())
        notes = await self.lister_notes()

        listes = []
        for classe in classes:
            membres = [n for n in notes if n.classe_id == classe.id]
            lignes = []
            for n in membres:
                rang = calculer_rang(membres, n.id)
                lignes.append(LigneClassement(
                    note=NoteExamenOut.model_validate(n),
                    rang=rang,
                    rang_affiche=format_rang(rang),
                    appreciation=appreciation(n.moyenne) if n.moyenne is not None else None,
                ))
            lignes.sort(key=lambda ligne: (ligne.rang is None, ligne.rang or 0))
            listes.append(ListeClasse(classe=ClasseOut.model_validate(classe), effectif=len(membres),
                                      participants=lignes))
        return listes

    # ───────────────────────────────
    # Configuration des capacités
    # ───────────────────────────────
    async def configs(self) -> List[ConfigCapaciteClasse]:
        result = await self.db.execute(select(ConfigCapaciteClasse).order_by(ConfigCapaciteClasse.niveau))
        return list(result.scalars().all())

    async def modifier_config(self, niveau: Niveau, capacite: int) -> ConfigCapaciteClasse:
        config = await self.db.scalar(
            select(ConfigCapaciteClasse).where(ConfigCapaciteClasse.niveau == niveau.value)
        )
        nouvelle = config is None
        if nouvelle:
            config = ConfigCapaciteClasse(niveau=niveau.value, capacite=capacite)
            self.db.add(config)
        else:
            config.capacite = capacite
        await self.db.commit()
        await self.db.refresh(config)
        logger.info(f"⚙️ Capacité des classes {niveau.value} : {capacite}")

        if self.provider:
            record = ConfigCapaciteOut.model_validate(config).model_dump(mode="json")
            if nouvelle:
                self.provider.add_local("config_capacite_classes", record, prepend=False)
            else:
                self.provider.update_config_local(config.id, record)
        return config

    async def stats_niveaux_formation(self) -> List[StatNiveauFormation]:
        result = await self.db.execute(select(vue_statistiques_niveaux_formation))
        return [StatNiveauFormation.model_validate(dict(row)) for row in result.mappings().all()]
