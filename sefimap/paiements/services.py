import logging
from collections import OrderedDict
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sefimap.auth.models import AdminUser, Role
from sefimap.data.provider import DataProvider
from sefimap.db.session import utcnow
from sefimap.inscriptions.models import ChefQuartier, Inscription, StatutPaiement
from sefimap.inscriptions.schemas import InscriptionOut
from sefimap.inscriptions.services import InscriptionNotFoundError
from sefimap.paiements.models import Paiement, StatutLignePaiement
from sefimap.paiements.rules import (
    derive_statut_paiement,
    est_solde,
    montant_requis,
    reste_a_payer,
)
from sefimap.paiements.schemas import (
    HistoriquePaiements,
    PaiementCreate,
    PaiementOut,
    PaiementsPresident,
    ResumePaiements,
    ResumePresident,
)
from sefimap.utils.formatting import format_cfa

logger = logging.getLogger(__name__)


class MontantInvalideError(Exception):
    pass


class ConfirmationRequiseError(Exception):
    pass


class HorsSectionError(Exception):
    pass


def _resume_membres(inscriptions: List[Inscription], chef: Optional[ChefQuartier] = None) -> ResumePresident:
    resume = ResumePresident(
        chef_quartier_id=chef.id if chef else None,
        nom_complet=chef.nom_complet if chef else None,
        zone=chef.zone if chef else None,
    )
    for inscription in inscriptions:
        paye = inscription.montant_total_paye or 0
        resume.total_membres += 1
        resume.total_collecte += paye
        resume.total_restant += reste_a_payer(paye)
        if est_solde(paye, inscription.statut_paiement):
            resume.soldes += 1
        elif paye > 0:
            resume.partiels += 1
        else:
            resume.non_payes += 1
    return resume


class PaiementService:
    def __init__(self, db: AsyncSession, provider: Optional[DataProvider] = None):
        self.db = db
        self.provider = provider

    async def _inscription(self, inscription_id: str) -> Inscription:
        result = await self.db.execute(
            select(Inscription)
            .where(Inscription.id == inscription_id)
            .execution_options(populate_existing=True)
        )
        inscription = result.scalars().first()
        if not inscription:
            raise InscriptionNotFoundError(f"Inscription introuvable : {inscription_id}")
        return inscription

    @staticmethod
    def _verifier_section(inscription: Inscription, user: Optional[AdminUser]) -> None:
        """Un président ne traite que les membres de sa propre section."""
        if user is None or user.role != Role.PRESIDENT.value:
            return
        if not user.chef_quartier_id or inscription.chef_quartier_id != user.chef_quartier_id:
            logger.warning(f"⛔ Président {user.email} hors de sa section : inscription {inscription.id}")
            raise HorsSectionError("Ce participant n'appartient pas à votre section.")

    def _synchroniser(self, inscription: Inscription) -> None:
        if self.provider:
            self.provider.update_inscription_local(
                inscription.id, InscriptionOut.model_validate(inscription).model_dump(mode="json")
            )

    # ───────────────────────────────
    # Validation financière
    # ───────────────────────────────
    async def en_attente_validation(self) -> List[Inscription]:
        """Inscriptions partiellement payées ou impayées, sous le montant requis."""
        result = await self.db.execute(
            select(Inscription)
            .where(
                Inscription.statut_paiement.in_([StatutPaiement.PARTIEL.value, StatutPaiement.NON_PAYE.value]),
                Inscription.montant_total_paye < montant_requis(),
            )
            .order_by(Inscription.created_at.desc())
        )
        return list(result.scalars().all())

    async def valider_financier(self, inscription_id: str, user: AdminUser) -> Inscription:
        inscription = await self._inscription(inscription_id)
        inscription.statut_paiement = StatutPaiement.VALIDE_FINANCIER.value
        inscription.valide_par_financier = user.id
        inscription.date_validation_financier = utcnow()
        await self.db.commit()

        inscription = await self._inscription(inscription_id)
        self._synchroniser(inscription)
        logger.info(f"✅ Paiement validé par la finance : {inscription.full_name} ({user.email})")
        return inscription

    async def refuser(self, inscription_id: str, user: AdminUser, confirmation: bool = False) -> Inscription:
        if not confirmation:
            raise ConfirmationRequiseError("Le refus d'un paiement doit être confirmé.")

        inscription = await self._inscription(inscription_id)
        inscription.statut_paiement = StatutPaiement.REFUSE.value
        inscription.valide_par_financier = user.id
        inscription.date_validation_financier = utcnow()
        await self.db.commit()

        inscription = await self._inscription(inscription_id)
        self._synchroniser(inscription)
        logger.info(f"Paiement refusé : {inscription.full_name} ({user.email})")
        return inscription

    # ───────────────────────────────
    # Versements
    # ───────────────────────────────
    async def ajouter_paiement(self, inscription_id: str, data: PaiementCreate,
                               user: AdminUser) -> Tuple[Paiement, Inscription]:
        """
        Ajoute un versement validé et reporte le nouveau total sur l'inscription.

        Le montant doit être positif et ne pas dépasser le reste à payer.
        """
        inscription = await self._inscription(inscription_id)
        self._verifier_section(inscription, user)
        deja_paye = inscription.montant_total_paye or 0
        reste = reste_a_payer(deja_paye)

        if data.montant <= 0:
            raise MontantInvalideError("Le montant doit être supérieur à 0.")
        if inscription.statut_paiement == StatutPaiement.VALIDE_FINANCIER.value:
            raise MontantInvalideError("Paiement déjà validé par la finance.")
        if reste <= 0 or est_solde(deja_paye, inscription.statut_paiement):
            raise MontantInvalideError("Cette inscription est déjà soldée.")
        if data.montant > reste:
            raise MontantInvalideError(f"Le montant ne peut pas dépasser le reste à payer ({format_cfa(reste)}).")

        paiement = Paiement(
            inscription_id=inscription.id,
            montant=data.montant,
            mode_paiement=data.mode_paiement.value,
            statut=StatutLignePaiement.VALIDE.value,
            type_paiement="inscription",
        )
        nouveau_total = deja_paye + data.montant
        inscription.montant_total_paye = nouveau_total
        # un refus de la finance reste affiché jusqu'à sa prochaine décision
        if inscription.statut_paiement != StatutPaiement.REFUSE.value:
            inscription.statut_paiement = derive_statut_paiement(nouveau_total)

        self.db.add(paiement)
        await self.db.commit()
        logger.info(
            f"💰 Paiement de {format_cfa(data.montant)} ajouté pour {inscription.full_name} "
            f"(total {format_cfa(nouveau_total)}) par {user.email}"
        )

        result = await self.db.execute(
            select(Paiement).where(Paiement.id == paiement.id).execution_options(populate_existing=True)
        )
        paiement = result.scalars().one()
        inscription = await self._inscription(inscription_id)

        if self.provider:
            self.provider.add_paiement_local(PaiementOut.model_validate(paiement).model_dump(mode="json"))
        self._synchroniser(inscription)
        return paiement, inscription

    async def lister(self, statut: Optional[str] = None) -> List[Paiement]:
        query = select(Paiement)
        if statut:
            query = query.where(Paiement.statut == statut)
        result = await self.db.execute(query.order_by(Paiement.date_paiement.desc()))
        return list(result.scalars().all())

    async def historique(self, inscription_id: str, user: Optional[AdminUser] = None) -> HistoriquePaiements:
        inscription = await self._inscription(inscription_id)
        self._verifier_section(inscription, user)
        result = await self.db.execute(
            select(Paiement)
            .where(Paiement.inscription_id == inscription_id)
            .order_by(Paiement.date_paiement.desc())
        )
        paye = inscription.montant_total_paye or 0
        return HistoriquePaiements(
            inscription_id=inscription_id,
            montant_requis=montant_requis(),
            montant_total_paye=paye,
            reste_a_payer=reste_a_payer(paye),
            paiements=[PaiementOut.model_validate(p) for p in result.scalars().all()],
        )

    # ───────────────────────────────
    # Synthèses
    # ───────────────────────────────
    async def resume(self) -> ResumePaiements:
        inscriptions = list((await self.db.execute(select(Inscription))).scalars().all())
        chefs = {c.id: c for c in (await self.db.execute(select(ChefQuartier))).scalars().all()}

        global_ = _resume_membres(inscriptions)
        par_chef = OrderedDict()
        for inscription in inscriptions:
            if inscription.chef_quartier_id:
                par_chef.setdefault(inscription.chef_quartier_id, []).append(inscription)

        par_president = [
            _resume_membres(membres, chefs.get(chef_id))
            for chef_id, membres in par_chef.items()
        ]
        par_president.sort(key=lambda r: r.nom_complet or "")

        return ResumePaiements(
            montant_requis=montant_requis(),
            total_collecte=global_.total_collecte,
            total_restant=global_.total_restant,
            soldes=global_.soldes,
            partiels=global_.partiels,
            non_payes=global_.non_payes,
            refuses=sum(1 for i in inscriptions if i.statut_paiement == StatutPaiement.REFUSE.value),
            par_president=par_president,
        )

    async def paiements_president(self, chef_quartier_id: str, filtre: Optional[str] = None) -> PaiementsPresident:
        """Membres d'un président de section ; filtre 'solde' ou 'non_solde'."""
        chef = await self.db.get(ChefQuartier, chef_quartier_id)
        result = await self.db.execute(
            select(Inscription)
            .where(Inscription.chef_quartier_id == chef_quartier_id)
            .order_by(Inscription.created_at.desc())
        )
        membres = list(result.scalars().all())
        resume = _resume_membres(membres, chef)

        if filtre == "solde":
            membres = [m for m in membres if est_solde(m.montant_total_paye, m.statut_paiement)]
        elif filtre == "non_solde":
            membres = [m for m in membres if not est_solde(m.montant_total_paye, m.statut_paiement)]

        return PaiementsPresident(
            resume=resume,
            membres=[InscriptionOut.model_validate(m) for m in membres],
        )
