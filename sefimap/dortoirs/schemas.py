from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DortoirOut(BaseModel):
    id: str
    nom: str
    capacite: int
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class DortoirCreate(BaseModel):
    nom: str = Field(..., min_length=1, max_length=100)
    capacite: int = Field(..., ge=1)
    description: Optional[str] = None


class DortoirUpdate(BaseModel):
    nom: Optional[str] = Field(None, min_length=1, max_length=100)
    capacite: Optional[int] = Field(None, ge=1)
    description: Optional[str] = None


class DortoirStatistiques(BaseModel):
    id: str
    nom: str
    capacite: int
    nombre_inscrits: int = 0
    places_disponibles: int = 0
    taux_remplissage: float = 0
    model_config = ConfigDict(from_attributes=True)

    @property
    def est_complet(self):
        return self.nombre_inscrits >= self.capacite


class ResumeDortoirs(BaseModel):
    dortoirs: List[DortoirStatistiques]
    capacite_totale: int
    total_inscrits: int
    taux_remplissage_global: float
