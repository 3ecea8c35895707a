# Règles de calcul du statut de paiement d'une inscription
from typing import Optional

from sefimap.config import settings
from sefimap.inscriptions.models import StatutPaiement

STATUTS_SOLDES = (StatutPaiement.SOLDE.value, StatutPaiement.VALIDE_FINANCIER.value)


def montant_requis(valeur: Optional[float] = None) -> float:
    return valeur or settings.MONTANT_REQUIS


def derive_statut_paiement(montant_paye: Optional[float], requis: Optional[float] = None) -> str:
    """soldé si P >= R, partiel si 0 < P < R, non_payé si P = 0."""
    paye = montant_paye or 0
    if paye >= montant_requis(requis):
        return StatutPaiement.SOLDE.value
    if paye > 0:
        return StatutPaiement.PARTIEL.value
    return StatutPaiement.NON_PAYE.value


def statut_paiement_presentiel(montant_paye: Optional[float], requis: Optional[float] = None) -> str:
    # Au guichet le secrétariat encaisse et valide en même temps
    paye = montant_paye or 0
    if paye >= montant_requis(requis):
        return StatutPaiement.VALIDE_FINANCIER.value
    if paye > 0:
        return StatutPaiement.PARTIEL.value
    return StatutPaiement.NON_PAYE.value


def est_solde(montant_paye: Optional[float], statut_paiement: Optional[str], requis: Optional[float] = None) -> bool:
    return (montant_paye or 0) >= montant_requis(requis) or statut_paiement in STATUTS_SOLDES


def reste_a_payer(montant_paye: Optional[float], requis: Optional[float] = None) -> float:
    return max(0.0, montant_requis(requis) - (montant_paye or 0))
