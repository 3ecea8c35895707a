from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from sefimap.inscriptions.schemas import InscriptionResume


class ClasseOut(BaseModel):
    id: str
    nom: str
    niveau: str
    numero: int
    capacite: int
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ClasseResume(BaseModel):
    id: str
    nom: str
    niveau: str
    numero: int
    model_config = ConfigDict(from_attributes=True)


class NoteExamenOut(BaseModel):
    id: str
    inscription_id: str
    classe_id: Optional[str] = None
    note_entree: Optional[float] = None
    note_cahiers: Optional[float] = None
    note_conduite: Optional[float] = None
    note_sortie: Optional[float] = None
    moyenne: Optional[float] = None
    niveau_attribue: Optional[str] = None
    saisi_par: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    inscription: Optional[InscriptionResume] = None
    classe: Optional[ClasseResume] = None
    model_config = ConfigDict(from_attributes=True)


class ConfigCapaciteOut(BaseModel):
    id: str
    niveau: str
    capacite: int
    model_config = ConfigDict(from_attributes=True)


class ConfigCapaciteUpdate(BaseModel):
    capacite: int = Field(..., ge=1, le=200)


class TestEntreeCreate(BaseModel):
    inscription_id: str
    note_entree: float = Field(..., ge=0, le=20)


class TestEntreeLot(BaseModel):
    notes: List[TestEntreeCreate] = Field(..., min_length=1)


class NotesUpdate(BaseModel):
    note_cahiers: Optional[float] = None
    note_conduite: Optional[float] = None
    note_sortie: Optional[float] = None


class ResultatTestEntree(BaseModel):
    note: NoteExamenOut
    classe: ClasseOut
    classe_creee: bool = False


class ResultatTestsLot(BaseModel):
    resultats: List[ResultatTestEntree] = []
    erreurs: Dict[str, str] = {}


class LigneClassement(BaseModel):
    note: NoteExamenOut
    rang: Optional[int] = None
    rang_affiche: str = "-"
    appreciation: Optional[str] = None


class ListeClasse(BaseModel):
    classe: ClasseOut
    effectif: int
    participants: List[LigneClassement]


class StatNiveauFormation(BaseModel):
    niveau_formation: Optional[str] = None
    nombre: int = 0
    pourcentage: float = 0
    model_config = ConfigDict(from_attributes=True)
