# sefimap/auth/models.py
from enum import Enum

from sqlalchemy import Column, String, ForeignKey

from sefimap.db.session import Base


class Role(str, Enum):
    SECRETAIRE = "secretaire"
    FINANCIER = "financier"
    SCIENTIFIQUE = "scientifique"
    PRESIDENT = "president"


# Page d'accueil de chaque rôle après connexion
ROLE_ROUTES = {
    Role.SECRETAIRE.value: "/admin/dashboard",
    Role.FINANCIER.value: "/finance/dashboard",
    Role.SCIENTIFIQUE.value: "/scientifique/dashboard",
    Role.PRESIDENT.value: "/president",
}


class AdminUser(Base):
    __tablename__ = "admin_users"

    # Même identifiant que l'utilisateur de l'auth hébergée
    id = Column(String(36), primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    nom = Column(String, nullable=True)
    prenom = Column(String, nullable=True)
    role = Column(String(20), nullable=False)
    chef_quartier_id = Column(String(36), ForeignKey("chefs_quartier.id"), nullable=True)

    def __repr__(self):
        return f"<AdminUser(id={self.id}, email='{self.email}', role='{self.role}')>"

    @property
    def full_name(self):
        """Nom complet de l'administrateur"""
        return f"{self.prenom or ''} {self.nom or ''}".strip()

    @property
    def home_route(self):
        return ROLE_ROUTES.get(self.role, "/")
