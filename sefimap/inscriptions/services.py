import logging
from typing import Dict, List, Optional, Type

from pydantic import ValidationError
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sefimap.auth.models import AdminUser
from sefimap.data.provider import DataProvider
from sefimap.db.session import utcnow
from sefimap.dortoirs.services import DortoirService
from sefimap.inscriptions.models import (
    ChefQuartier,
    Inscription,
    StatutInscription,
    TypeInscription,
)
from sefimap.inscriptions.schemas import (
    ETAPES_FORMULAIRE,
    AttributionDortoir,
    InscriptionFilters,
    InscriptionFormulaire,
    InscriptionOut,
    InscriptionPresentielle,
    InscriptionPublique,
    InscriptionUpdate,
    ResultatValidationGroupee,
    ValidationEtape,
    erreurs_par_champ,
)
from sefimap.paiements.models import ModePaiement, Paiement, StatutLignePaiement
from sefimap.paiements.rules import derive_statut_paiement, statut_paiement_presentiel
from sefimap.paiements.schemas import PaiementOut
from sefimap.utils.storage import PhotoBucket

logger = logging.getLogger(__name__)


class InscriptionNotFoundError(Exception):
    pass


class DortoirRequisError(Exception):
    pass


class TransitionInvalideError(Exception):
    pass


class ChefQuartierNotFoundError(Exception):
    pass


class PhotoRequiseError(Exception):
    pass


MESSAGE_DORTOIR_REQUIS = "Un dortoir doit être attribué avant de valider une inscription en ligne."


def peut_etre_validee(inscription: Inscription) -> bool:
    """Une inscription en ligne ne peut être validée sans dortoir ; les présentielles en sont exemptées."""
    if inscription.type_inscription == TypeInscription.EN_LIGNE.value:
        return bool(inscription.dortoir_id)
    return True


def valider_etape(etape: int, data: dict, photo_presente: bool,
                  schema: Type[InscriptionFormulaire] = InscriptionPublique) -> ValidationEtape:
    """Valide les champs d'une seule étape du formulaire multi-étapes."""
    if etape not in ETAPES_FORMULAIRE:
        return ValidationEtape(etape=etape, valide=False, erreurs={"etape": "Étape inconnue"})

    if etape == 1:
        erreurs = {} if photo_presente else {"photo": "Une photo est obligatoire"}
        return ValidationEtape(etape=etape, valide=not erreurs, erreurs=erreurs)

    champs = ETAPES_FORMULAIRE[etape]
    try:
        schema(**data)
        erreurs = {}
    except ValidationError as e:
        erreurs = {champ: msg for champ, msg in erreurs_par_champ(e).items() if champ in champs}
    return ValidationEtape(etape=etape, valide=not erreurs, erreurs=erreurs)


class InscriptionService:
    def __init__(self, db: AsyncSession, provider: Optional[DataProvider] = None):
        self.db = db
        self.provider = provider

    # ───────────────────────────────
    # Lecture
    # ───────────────────────────────
    async def _charger(self, inscription_id: str) -> Optional[Inscription]:
        result = await self.db.execute(
            select(Inscription)
            .where(Inscription.id == inscription_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def obtenir(self, inscription_id: str) -> Inscription:
        inscription = await self._charger(inscription_id)
        if not inscription:
            raise InscriptionNotFoundError(f"Inscription introuvable : {inscription_id}")
        return inscription

    async def lister(self, filtres: Optional[InscriptionFilters] = None) -> List[Inscription]:
        query = select(Inscription)
        if filtres:
            if filtres.search:
                terme = f"%{filtres.search.strip().lower()}%"
                query = query.where(or_(
                    func.lower(Inscription.nom).like(terme),
                    func.lower(Inscription.prenom).like(terme),
                    func.lower(Inscription.reference_id).like(terme),
                ))
            if filtres.statut:
                query = query.where(Inscription.statut == filtres.statut.value)
            if filtres.chef_quartier_id:
                query = query.where(Inscription.chef_quartier_id == filtres.chef_quartier_id)
            if filtres.niveau_formation:
                query = query.where(Inscription.niveau_formation == filtres.niveau_formation.value)
            if filtres.sexe:
                query = query.where(Inscription.sexe == filtres.sexe.value)
            if filtres.type_inscription:
                query = query.where(Inscription.type_inscription == filtres.type_inscription.value)

        result = await self.db.execute(query.order_by(Inscription.created_at.desc()))
        return list(result.scalars().all())

    async def recentes_presentielles(self, admin_id: str, limite: int = 5) -> List[Inscription]:
        result = await self.db.execute(
            select(Inscription)
            .where(
                Inscription.type_inscription == TypeInscription.PRESENTIELLE.value,
                Inscription.admin_id == admin_id,
            )
            .order_by(Inscription.created_at.desc())
            .limit(limite)
        )
        return list(result.scalars().all())

    def _synchroniser(self, inscription: Inscription, nouvelle: bool = False) -> None:
        if not self.provider:
            return
        record = InscriptionOut.model_validate(inscription).model_dump(mode="json")
        if nouvelle:
            self.provider.add_inscription_local(record)
        else:
            self.provider.update_inscription_local(inscription.id, record)

    async def _enregistrer(self, inscription: Inscription) -> Inscription:
        await self.db.commit()
        inscription = await self._charger(inscription.id)
        self._synchroniser(inscription)
        return inscription

    # ───────────────────────────────
    # Validation / rejet
    # ───────────────────────────────
    async def valider(self, inscription_id: str, user: AdminUser) -> Inscription:
        inscription = await self.obtenir(inscription_id)
        if inscription.statut != StatutInscription.EN_ATTENTE.value:
            raise TransitionInvalideError(
                f"Seule une inscription en attente peut être validée (statut actuel : {inscription.statut})."
            )
        if not peut_etre_validee(inscription):
            logger.warning(f"⛔ Validation refusée sans dortoir : inscription {inscription_id}")
            raise DortoirRequisError(MESSAGE_DORTOIR_REQUIS)

        inscription.statut = StatutInscription.VALIDE.value
        inscription.valide_par_secretariat = user.id
        inscription.date_validation_secretariat = utcnow()
        inscription = await self._enregistrer(inscription)
        logger.info(f"✅ Inscription validée : {inscription.full_name} par {user.email}")
        return inscription

    async def valider_selection(self, ids: List[str], user: AdminUser) -> ResultatValidationGroupee:
        """Validation groupée : chaque inscription sélectionnée passe par la même règle."""
        resultat = ResultatValidationGroupee()
        for inscription_id in ids:
            try:
                await self.valider(inscription_id, user)
                resultat.validees.append(inscription_id)
            except (InscriptionNotFoundError, DortoirRequisError, TransitionInvalideError) as e:
                resultat.refusees[inscription_id] = str(e)
        logger.info(
            f"Validation groupée : {len(resultat.validees)} validée(s), {len(resultat.refusees)} refusée(s)"
        )
        return resultat

    async def rejeter(self, inscription_id: str, user: AdminUser) -> Inscription:
        inscription = await self.obtenir(inscription_id)
        if inscription.statut != StatutInscription.EN_ATTENTE.value:
            raise TransitionInvalideError(
                f"Seule une inscription en attente peut être rejetée (statut actuel : {inscription.statut})."
            )
        inscription.statut = StatutInscription.REJETE.value
        inscription = await self._enregistrer(inscription)
        logger.info(f"Inscription rejetée : {inscription.full_name} par {user.email}")
        return inscription

    # ───────────────────────────────
    # Modification
    # ───────────────────────────────
    async def modifier(self, inscription_id: str, updates: InscriptionUpdate, user: AdminUser) -> Inscription:
        """
        Modification libre de la fiche, statut compris.

        Le changement de statut en mode édition n'est soumis à aucune règle de
        transition ; un changement de dortoir passe par le contrôle de capacité.
        """
        inscription = await self.obtenir(inscription_id)
        champs = updates.model_dump(exclude_unset=True, mode="json")

        nouveau_dortoir = champs.get("dortoir_id")
        if nouveau_dortoir:
            await DortoirService(self.db).verifier_capacite(nouveau_dortoir, inscription.dortoir_id)

        if "chef_quartier_id" in champs and champs["chef_quartier_id"]:
            await self._verifier_chef(champs["chef_quartier_id"])

        for field, value in champs.items():
            setattr(inscription, field, value)

        if champs.get("statut") == StatutInscription.VALIDE.value and not peut_etre_validee(inscription):
            logger.warning(
                f"⚠️ Statut 'valide' forcé en édition sans dortoir : inscription {inscription_id} par {user.email}"
            )

        inscription = await self._enregistrer(inscription)
        logger.info(f"Inscription modifiée : {inscription_id} ({', '.join(champs) or 'aucun champ'})")
        return inscription

    async def attribuer_dortoir(self, inscription_id: str, data: AttributionDortoir, user: AdminUser) -> Inscription:
        inscription = await self.obtenir(inscription_id)
        if inscription.dortoir_id == data.dortoir_id and (
            data.niveau_formation is None or data.niveau_formation.value == inscription.niveau_formation
        ):
            return inscription

        await DortoirService(self.db).verifier_capacite(data.dortoir_id, inscription.dortoir_id)
        inscription.dortoir_id = data.dortoir_id
        if data.niveau_formation is not None:
            inscription.niveau_formation = data.niveau_formation.value
        inscription = await self._enregistrer(inscription)
        logger.info(f"🛏️ Dortoir attribué : inscription {inscription_id} -> {data.dortoir_id} par {user.email}")
        return inscription

    async def supprimer(self, inscription_id: str, bucket: Optional[PhotoBucket] = None) -> None:
        inscription = await self.obtenir(inscription_id)
        photo_url = inscription.photo_url
        await self.db.delete(inscription)
        await self.db.commit()
        logger.info(f"🗑️ Inscription supprimée : {inscription_id}")

        if bucket and photo_url:
            await bucket.delete_photo(photo_url)
        if self.provider:
            self.provider.delete_inscription_local(inscription_id)

    # ───────────────────────────────
    # Nouvelles inscriptions
    # ───────────────────────────────
    async def _verifier_chef(self, chef_quartier_id: str) -> ChefQuartier:
        chef = await self.db.get(ChefQuartier, chef_quartier_id)
        if not chef:
            raise ChefQuartierNotFoundError("Président de section introuvable")
        return chef

    async def _ajouter_paiement_initial(self, inscription: Inscription, montant: float,
                                        mode: Optional[str], statut: str) -> Optional[Paiement]:
        """Paiement enregistré avec l'inscription ; un échec est journalisé sans annuler l'inscription."""
        paiement = Paiement(
            inscription_id=inscription.id,
            montant=montant,
            mode_paiement=mode or ModePaiement.ESPECES.value,
            statut=statut,
            type_paiement="inscription",
        )
        try:
            self.db.add(paiement)
            await self.db.commit()
            result = await self.db.execute(
                select(Paiement)
                .where(Paiement.id == paiement.id)
                .execution_options(populate_existing=True)
            )
            paiement = result.scalars().one()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"❌ Erreur enregistrement paiement pour l'inscription {inscription.id}: {e}")
            return None

        if self.provider:
            self.provider.add_paiement_local(PaiementOut.model_validate(paiement).model_dump(mode="json"))
        return paiement

    async def _creer(self, inscription: Inscription, photo_url: str, bucket: PhotoBucket) -> Inscription:
        try:
            self.db.add(inscription)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error("❌ Échec de création de l'inscription, suppression de la photo envoyée")
            await bucket.delete_photo(photo_url)
            raise
        inscription = await self._charger(inscription.id)
        self._synchroniser(inscription, nouvelle=True)
        return inscription

    async def _upload(self, bucket: PhotoBucket, photo: Optional[bytes], filename: Optional[str], prefixe: str) -> str:
        if not photo:
            raise PhotoRequiseError("Une photo est obligatoire pour l'inscription")
        # Un échec d'upload interrompt toute l'inscription
        return await bucket.upload_photo(photo, filename, prefixe)

    async def inscrire_en_ligne(
        self,
        data: InscriptionFormulaire,
        chef_quartier_id: str,
        photo: Optional[bytes],
        photo_filename: Optional[str],
        bucket: PhotoBucket,
        created_by: str = "public",
    ) -> Inscription:
        """Inscription en ligne (publique ou par un président de section)."""
        await self._verifier_chef(chef_quartier_id)
        photo_url = await self._upload(bucket, photo, photo_filename, created_by)

        montant = data.montant_paye or 0
        inscription = Inscription(
            **self._champs_formulaire(data),
            chef_quartier_id=chef_quartier_id,
            type_inscription=TypeInscription.EN_LIGNE.value,
            statut=StatutInscription.EN_ATTENTE.value,
            created_by=created_by,
            photo_url=photo_url,
            montant_total_paye=montant,
            statut_paiement=derive_statut_paiement(montant),
            mode_paiement=data.mode_paiement or ModePaiement.ESPECES.value,
        )
        inscription = await self._creer(inscription, photo_url, bucket)
        logger.info(f"✅ Inscription en ligne créée : {inscription.full_name} ({created_by})")

        if montant > 0:
            # Argent collecté directement : le paiement est validé d'office
            await self._ajouter_paiement_initial(
                inscription, montant, data.mode_paiement, StatutLignePaiement.VALIDE.value
            )
        return await self.obtenir(inscription.id)

    async def inscrire_presentielle(
        self,
        data: InscriptionPresentielle,
        photo: Optional[bytes],
        photo_filename: Optional[str],
        bucket: PhotoBucket,
        user: AdminUser,
    ) -> Inscription:
        """Inscription au guichet : validée immédiatement, dortoir obligatoire."""
        await DortoirService(self.db).verifier_capacite(data.dortoir_id)
        photo_url = await self._upload(bucket, photo, photo_filename, "presentiel")

        maintenant = utcnow()
        montant = data.montant_paye or 0
        inscription = Inscription(
            **self._champs_formulaire(data),
            admin_id=user.id,
            type_inscription=TypeInscription.PRESENTIELLE.value,
            statut=StatutInscription.VALIDE.value,
            created_by="secretariat",
            workflow_status="valide",
            valide_par_secretariat=user.id,
            date_validation_secretariat=maintenant,
            valide_par_financier=user.id,
            date_validation_financier=maintenant,
            photo_url=photo_url,
            dortoir_id=data.dortoir_id,
            montant_total_paye=montant,
            statut_paiement=statut_paiement_presentiel(montant),
            mode_paiement=ModePaiement.ESPECES.value,
        )
        inscription = await self._creer(inscription, photo_url, bucket)
        logger.info(f"✅ Inscription présentielle créée : {inscription.full_name} par {user.email}")

        if montant > 0:
            await self._ajouter_paiement_initial(
                inscription, montant, ModePaiement.ESPECES.value, StatutLignePaiement.ATTENTE.value
            )
        return await self.obtenir(inscription.id)

    @staticmethod
    def _champs_formulaire(data: InscriptionFormulaire) -> Dict[str, object]:
        return {
            "nom": data.nom,
            "prenom": data.prenom,
            "age": data.age,
            "sexe": data.sexe.value,
            "niveau_etude": data.niveau_etude.value,
            "telephone": data.telephone,
            "ecole": data.ecole,
            "nom_parent": data.nom_parent,
            "prenom_parent": data.prenom_parent,
            "numero_parent": data.numero_parent,
            "lieu_habitation": data.lieu_habitation,
            "nombre_participations": data.nombre_participations,
            "numero_urgence": data.numero_urgence,
        }
