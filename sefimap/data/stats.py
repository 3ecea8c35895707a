# Statistiques dérivées des collections en cache (recalcul pur)
from typing import Dict, List, Optional

from sefimap.config import settings

NIVEAUX = ("niveau_1", "niveau_2", "niveau_3", "niveau_superieur")


def _montant_requis(inscription: dict) -> float:
    return inscription.get("montant_requis") or settings.MONTANT_REQUIS


def calculer_stats(inscriptions: List[dict], paiements: List[dict]) -> Dict[str, float]:
    """Compteurs du tableau de bord général."""

    def compter(predicat, elements):
        return sum(1 for e in elements if predicat(e))

    return {
        # Inscriptions
        "totalInscriptions": len(inscriptions),
        "inscriptionsValidees": compter(lambda i: i.get("statut") == "valide", inscriptions),
        "inscriptionsEnAttente": compter(lambda i: i.get("statut") == "en_attente", inscriptions),
        "inscriptionsRejetees": compter(lambda i: i.get("statut") == "rejete", inscriptions),

        # Paiements
        "totalCollecte": sum(i.get("montant_total_paye") or 0 for i in inscriptions),
        "paiementsEnAttente": compter(
            lambda i: i.get("statut_paiement") == "partiel"
            and (i.get("montant_total_paye") or 0) < _montant_requis(i),
            inscriptions,
        ),
        "paiementsPartiels": compter(lambda i: i.get("statut_paiement") == "partiel", inscriptions),
        "paiementsComplets": compter(
            lambda i: i.get("statut_paiement") in ("soldé", "valide_financier"), inscriptions
        ),
        "paiementsValides": compter(lambda p: p.get("statut") == "validé", paiements),
        "paiementsNonValides": compter(lambda p: p.get("statut") in ("attente", "en_attente"), paiements),

        # Démographie
        "hommes": compter(lambda i: i.get("sexe") == "homme", inscriptions),
        "femmes": compter(lambda i: i.get("sexe") == "femme", inscriptions),

        # Par type
        "inscriptionsEnLigne": compter(lambda i: i.get("type_inscription") == "en_ligne", inscriptions),
        "inscriptionsPresentielle": compter(lambda i: i.get("type_inscription") == "presentielle", inscriptions),
    }


def calculer_stats_scientifique(inscriptions: List[dict], notes: List[dict], classes: List[dict]) -> dict:
    """
    Compteurs de la section scientifique.

    Chaque participant est compté une seule fois par niveau, même si
    plusieurs lignes de notes existent pour la même inscription.
    """
    valides = {i["id"] for i in inscriptions if i.get("statut") == "valide"}
    avec_note_entree = {n["inscription_id"] for n in notes if n.get("note_entree") is not None}
    avec_moyenne = {n["inscription_id"] for n in notes if n.get("moyenne") is not None}

    par_niveau = {niveau: set() for niveau in NIVEAUX}
    for note in notes:
        niveau: Optional[str] = note.get("niveau_attribue")
        if niveau in par_niveau:
            par_niveau[niveau].add(note["inscription_id"])

    return {
        "totalParticipantsValides": len(valides),
        "participantsAvecNoteEntree": len(avec_note_entree),
        "participantsSansNoteEntree": len(valides - avec_note_entree),
        "parNiveau": {niveau: len(ids) for niveau, ids in par_niveau.items()},
        "participantsAvecMoyenne": len(avec_moyenne),
        "totalClasses": len(classes),
    }
