from enum import Enum

from sqlalchemy import Column, Computed, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from sefimap.db.session import Base, generate_uuid, utcnow
from sefimap.inscriptions.models import Inscription


class Niveau(str, Enum):
    NIVEAU_1 = "niveau_1"
    NIVEAU_2 = "niveau_2"
    NIVEAU_3 = "niveau_3"
    NIVEAU_SUPERIEUR = "niveau_superieur"


NIVEAU_LABELS = {
    Niveau.NIVEAU_1.value: "Niveau 1",
    Niveau.NIVEAU_2.value: "Niveau 2",
    Niveau.NIVEAU_3.value: "Niveau 3",
    Niveau.NIVEAU_SUPERIEUR.value: "Niveau Supérieur",
}


class Classe(Base):
    __tablename__ = "classes"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    nom = Column(String(100), nullable=False)
    niveau = Column(String(20), nullable=False, index=True)
    numero = Column(Integer, nullable=False)
    capacite = Column(Integer, nullable=False, default=10)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Classe(id={self.id}, nom='{self.nom}', niveau='{self.niveau}', numero={self.numero})>"


class NoteExamen(Base):
    __tablename__ = "notes_examens"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    inscription_id = Column(String(36), ForeignKey("inscriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    classe_id = Column(String(36), ForeignKey("classes.id"), nullable=True, index=True)
    note_entree = Column(Float, nullable=True)
    note_cahiers = Column(Float, nullable=True)
    note_conduite = Column(Float, nullable=True)
    note_sortie = Column(Float, nullable=True)
    # Calculée par le backend, jamais écrite par l'application
    moyenne = Column(
        Float,
        Computed("(note_entree + note_cahiers + note_conduite + note_sortie) / 4", persisted=True),
    )
    niveau_attribue = Column(String(20), nullable=True)
    saisi_par = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    inscription = relationship(Inscription, lazy="selectin")
    classe = relationship(Classe, lazy="selectin")

    def __repr__(self):
        return f"<NoteExamen(id={self.id}, inscription_id={self.inscription_id}, moyenne={self.moyenne})>"


class ConfigCapaciteClasse(Base):
    __tablename__ = "config_capacite_classes"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    niveau = Column(String(20), nullable=False, unique=True)
    capacite = Column(Integer, nullable=False, default=10)

    def __repr__(self):
        return f"<ConfigCapaciteClasse(niveau='{self.niveau}', capacite={self.capacite})>"
