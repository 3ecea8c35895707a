from sqlalchemy import Column, DateTime, Integer, String, Text

from sefimap.db.session import Base, generate_uuid, utcnow


class Dortoir(Base):
    __tablename__ = "dortoirs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    nom = Column(String(100), nullable=False, unique=True)
    capacite = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Dortoir(id={self.id}, nom='{self.nom}', capacite={self.capacite})>"
