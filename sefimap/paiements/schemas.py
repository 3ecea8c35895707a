from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from sefimap.inscriptions.schemas import InscriptionOut, InscriptionResume
from sefimap.paiements.models import ModePaiement


class PaiementOut(BaseModel):
    id: str
    inscription_id: str
    montant: float
    mode_paiement: str
    statut: str
    type_paiement: Optional[str] = None
    date_paiement: datetime
    inscription: Optional[InscriptionResume] = None
    model_config = ConfigDict(from_attributes=True)


class PaiementCreate(BaseModel):
    montant: float = Field(..., gt=0)
    mode_paiement: ModePaiement = ModePaiement.ESPECES


class RefusPaiement(BaseModel):
    confirmation: bool = False


class ResumePresident(BaseModel):
    chef_quartier_id: Optional[str] = None
    nom_complet: Optional[str] = None
    zone: Optional[str] = None
    total_membres: int = 0
    total_collecte: float = 0
    total_restant: float = 0
    soldes: int = 0
    partiels: int = 0
    non_payes: int = 0


class ResumePaiements(BaseModel):
    montant_requis: float
    total_collecte: float
    total_restant: float
    soldes: int
    partiels: int
    non_payes: int
    refuses: int
    par_president: List[ResumePresident] = []


class PaiementsPresident(BaseModel):
    resume: ResumePresident
    membres: List[InscriptionOut]


class HistoriquePaiements(BaseModel):
    inscription_id: str
    montant_requis: float
    montant_total_paye: float
    reste_a_payer: float
    paiements: List[PaiementOut]


class VersementResultat(BaseModel):
    paiement: PaiementOut
    inscription: InscriptionOut
