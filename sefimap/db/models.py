# Importe tous les modèles pour que le registre SQLAlchemy soit complet
from sefimap.auth.models import AdminUser
from sefimap.dortoirs.models import Dortoir
from sefimap.inscriptions.models import ChefQuartier, Inscription
from sefimap.paiements.models import Paiement
from sefimap.scientifique.models import Classe, ConfigCapaciteClasse, NoteExamen

__all__ = [
    "AdminUser",
    "ChefQuartier",
    "Classe",
    "ConfigCapaciteClasse",
    "Dortoir",
    "Inscription",
    "NoteExamen",
    "Paiement",
]
