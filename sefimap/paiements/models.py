from enum import Enum

from sqlalchemy import Column, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import relationship

from sefimap.db.session import Base, generate_uuid, utcnow
from sefimap.inscriptions.models import Inscription


class StatutLignePaiement(str, Enum):
    VALIDE = "validé"
    ATTENTE = "attente"
    EN_ATTENTE = "en_attente"
    REFUSE = "refuse"


class ModePaiement(str, Enum):
    ESPECES = "especes"
    MOBILE_MONEY = "mobile_money"
    VIREMENT = "virement"


class Paiement(Base):
    __tablename__ = "paiements"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    inscription_id = Column(String(36), ForeignKey("inscriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    montant = Column(Float, nullable=False)
    mode_paiement = Column(String(30), nullable=False, default=ModePaiement.ESPECES.value)
    statut = Column(String(20), nullable=False, default=StatutLignePaiement.ATTENTE.value)
    type_paiement = Column(String(30), nullable=False, default="inscription")
    date_paiement = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    inscription = relationship(Inscription, lazy="selectin")

    def __repr__(self):
        return f"<Paiement(id={self.id}, inscription_id={self.inscription_id}, montant={self.montant})>"
