from enum import Enum

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from sefimap.db.session import Base, generate_uuid, utcnow
from sefimap.dortoirs.models import Dortoir


class StatutInscription(str, Enum):
    EN_ATTENTE = "en_attente"
    VALIDE = "valide"
    REJETE = "rejete"


class TypeInscription(str, Enum):
    EN_LIGNE = "en_ligne"
    PRESENTIELLE = "presentielle"


class StatutPaiement(str, Enum):
    NON_PAYE = "non_payé"
    PARTIEL = "partiel"
    SOLDE = "soldé"
    VALIDE_FINANCIER = "valide_financier"
    REFUSE = "refuse"


class NiveauFormation(str, Enum):
    DEBUTANT = "debutant"
    NORMAL = "normal"
    SUPERIEUR = "superieur"


class NiveauEtude(str, Enum):
    AUCUN = "aucun"
    PRIMAIRE = "primaire"
    SECONDAIRE = "secondaire"
    SUPERIEUR = "superieur"
    ARABE = "arabe"


class Sexe(str, Enum):
    HOMME = "homme"
    FEMME = "femme"


class ChefQuartier(Base):
    __tablename__ = "chefs_quartier"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    nom_complet = Column(String(150), nullable=False, index=True)
    zone = Column(String(100), nullable=True)
    ecole = Column(String(150), nullable=True)
    telephone = Column(String(30), nullable=True)

    def __repr__(self):
        return f"<ChefQuartier(id={self.id}, nom_complet='{self.nom_complet}')>"


class Inscription(Base):
    __tablename__ = "inscriptions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    reference_id = Column(String(30), nullable=True, index=True)

    # Identité
    nom = Column(String(100), nullable=False, index=True)
    prenom = Column(String(100), nullable=False)
    age = Column(Integer, nullable=True)
    sexe = Column(String(10), nullable=False)
    niveau_etude = Column(String(20), nullable=True)
    ecole = Column(String(150), nullable=True)
    photo_url = Column(String(500), nullable=True)

    # Contact
    telephone = Column(String(30), nullable=True)
    nom_parent = Column(String(100), nullable=True)
    prenom_parent = Column(String(100), nullable=True)
    numero_parent = Column(String(30), nullable=True)
    lieu_habitation = Column(String(150), nullable=True)
    nombre_participations = Column(Integer, default=0)
    numero_urgence = Column(String(30), nullable=True)

    # Workflow
    type_inscription = Column(String(20), nullable=False, default=TypeInscription.EN_LIGNE.value)
    statut = Column(String(20), nullable=False, default=StatutInscription.EN_ATTENTE.value, index=True)
    created_by = Column(String(20), nullable=True)
    workflow_status = Column(String(20), nullable=True)
    niveau_formation = Column(String(20), nullable=True)
    valide_par_secretariat = Column(String(36), nullable=True)
    date_validation_secretariat = Column(DateTime(timezone=True), nullable=True)

    # Paiement
    montant_total_paye = Column(Float, nullable=False, default=0)
    statut_paiement = Column(String(20), nullable=False, default=StatutPaiement.NON_PAYE.value)
    mode_paiement = Column(String(30), nullable=True)
    valide_par_financier = Column(String(36), nullable=True)
    date_validation_financier = Column(DateTime(timezone=True), nullable=True)

    dortoir_id = Column(String(36), ForeignKey("dortoirs.id"), nullable=True, index=True)
    chef_quartier_id = Column(String(36), ForeignKey("chefs_quartier.id"), nullable=True, index=True)
    admin_id = Column(String(36), ForeignKey("admin_users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    chef_quartier = relationship(ChefQuartier, lazy="selectin")
    dortoir = relationship(Dortoir, lazy="selectin")

    def __repr__(self):
        return f"<Inscription(id={self.id}, nom='{self.nom}', prenom='{self.prenom}', statut='{self.statut}')>"

    @property
    def full_name(self):
        return f"{self.nom} {self.prenom}".strip()

    @property
    def est_en_ligne(self):
        return self.type_inscription == TypeInscription.EN_LIGNE.value
