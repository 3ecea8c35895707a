from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sefimap.config import settings
from sefimap.inscriptions.models import (
    NiveauEtude,
    NiveauFormation,
    Sexe,
    StatutInscription,
    TypeInscription,
)


# ===========================
# SORTIES
# ===========================
class ChefQuartierOut(BaseModel):
    id: str
    nom_complet: str
    zone: Optional[str] = None
    ecole: Optional[str] = None
    telephone: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class DortoirResume(BaseModel):
    id: str
    nom: str
    model_config = ConfigDict(from_attributes=True)


class InscriptionOut(BaseModel):
    id: str
    reference_id: Optional[str] = None
    nom: str
    prenom: str
    age: Optional[int] = None
    sexe: str
    niveau_etude: Optional[str] = None
    ecole: Optional[str] = None
    photo_url: Optional[str] = None
    telephone: Optional[str] = None
    nom_parent: Optional[str] = None
    prenom_parent: Optional[str] = None
    numero_parent: Optional[str] = None
    lieu_habitation: Optional[str] = None
    nombre_participations: Optional[int] = None
    numero_urgence: Optional[str] = None
    type_inscription: str
    statut: str
    created_by: Optional[str] = None
    workflow_status: Optional[str] = None
    niveau_formation: Optional[str] = None
    valide_par_secretariat: Optional[str] = None
    date_validation_secretariat: Optional[datetime] = None
    montant_total_paye: float = 0
    statut_paiement: str
    mode_paiement: Optional[str] = None
    valide_par_financier: Optional[str] = None
    date_validation_financier: Optional[datetime] = None
    dortoir_id: Optional[str] = None
    chef_quartier_id: Optional[str] = None
    admin_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    chef_quartier: Optional[ChefQuartierOut] = None
    dortoir: Optional[DortoirResume] = None
    model_config = ConfigDict(from_attributes=True)


# ===========================
# FORMULAIRES D'INSCRIPTION
# ===========================
def _min_length(value: Optional[str], minimum: int, message: str) -> Optional[str]:
    if value is None or len(value.strip()) < minimum:
        raise ValueError(message)
    return value.strip()


class InscriptionFormulaire(BaseModel):
    """Champs communs aux formulaires d'inscription (président et public)."""

    nom: str
    prenom: str
    age: int
    sexe: Sexe
    niveau_etude: NiveauEtude
    telephone: Optional[str] = None
    ecole: Optional[str] = None
    nom_parent: str
    prenom_parent: str
    numero_parent: str
    lieu_habitation: str
    nombre_participations: int = 0
    numero_urgence: str
    montant_paye: float = 0
    mode_paiement: Optional[str] = None

    @field_validator("nom")
    @classmethod
    def valider_nom(cls, v):
        return _min_length(v, 2, "Le nom doit contenir au moins 2 caractères")

    @field_validator("prenom")
    @classmethod
    def valider_prenom(cls, v):
        return _min_length(v, 2, "Le prénom doit contenir au moins 2 caractères")

    @field_validator("age")
    @classmethod
    def valider_age(cls, v):
        if v < 1:
            raise ValueError("L'âge est requis")
        if v > 120:
            raise ValueError("Âge invalide")
        return v

    @field_validator("nom_parent")
    @classmethod
    def valider_nom_parent(cls, v):
        return _min_length(v, 2, "Le nom du parent est requis")

    @field_validator("prenom_parent")
    @classmethod
    def valider_prenom_parent(cls, v):
        return _min_length(v, 2, "Le prénom du parent est requis")

    @field_validator("numero_parent")
    @classmethod
    def valider_numero_parent(cls, v):
        return _min_length(v, 8, "Le numéro du parent est obligatoire")

    @field_validator("lieu_habitation")
    @classmethod
    def valider_lieu(cls, v):
        return _min_length(v, 2, "Le lieu d'habitation est requis")

    @field_validator("numero_urgence")
    @classmethod
    def valider_numero_urgence(cls, v):
        return _min_length(v, 8, "Le numéro d'urgence est obligatoire")

    @field_validator("nombre_participations")
    @classmethod
    def valider_participations(cls, v):
        if v < 0:
            raise ValueError("Le nombre doit être positif ou zéro")
        return v

    @field_validator("montant_paye")
    @classmethod
    def valider_montant(cls, v):
        if v < 0:
            raise ValueError("Le montant doit être positif")
        if v > settings.MONTANT_REQUIS:
            raise ValueError(f"Le montant ne peut pas dépasser {settings.MONTANT_REQUIS} FCFA")
        return v

    @field_validator("telephone", "ecole", "mode_paiement")
    @classmethod
    def vide_vers_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class InscriptionPublique(InscriptionFormulaire):
    chef_quartier_id: str

    @field_validator("chef_quartier_id")
    @classmethod
    def valider_chef(cls, v):
        return _min_length(v, 1, "Veuillez choisir votre président de section")


class InscriptionPresentielle(InscriptionFormulaire):
    telephone: str
    dortoir_id: str

    @field_validator("telephone")
    @classmethod
    def valider_telephone(cls, v):
        return _min_length(v, 8, "Le numéro de téléphone est obligatoire")

    @field_validator("dortoir_id")
    @classmethod
    def valider_dortoir(cls, v):
        return _min_length(v, 1, "Veuillez sélectionner un dortoir")


# Étapes du formulaire multi-étapes : Photo, Identité, Contact, Paiement
ETAPES_FORMULAIRE = {
    1: ["photo"],
    2: ["nom", "prenom", "age", "sexe", "niveau_etude", "ecole"],
    3: [
        "telephone", "nom_parent", "prenom_parent", "numero_parent",
        "lieu_habitation", "nombre_participations", "numero_urgence", "chef_quartier_id",
    ],
    4: ["montant_paye", "mode_paiement"],
}


def erreurs_par_champ(exc: ValidationError) -> Dict[str, str]:
    """Transforme une ValidationError pydantic en messages français par champ."""
    erreurs = {}
    for err in exc.errors():
        champ = str(err["loc"][0]) if err.get("loc") else "__all__"
        if champ in erreurs:
            continue
        if err["type"] == "missing":
            erreurs[champ] = "Ce champ est obligatoire"
        elif err["type"] == "value_error":
            erreurs[champ] = str(err.get("ctx", {}).get("error", err["msg"]))
        elif err["type"] == "enum":
            erreurs[champ] = "Veuillez sélectionner une valeur valide"
        else:
            erreurs[champ] = "Valeur invalide"
    return erreurs


class ValidationEtape(BaseModel):
    etape: int
    valide: bool
    erreurs: Dict[str, str] = {}


# ===========================
# GESTION DES INSCRIPTIONS
# ===========================
class InscriptionUpdate(BaseModel):
    """Champs modifiables par le secrétariat ; les montants passent par les paiements."""

    nom: Optional[str] = None
    prenom: Optional[str] = None
    age: Optional[int] = Field(None, ge=1, le=120)
    sexe: Optional[Sexe] = None
    niveau_etude: Optional[NiveauEtude] = None
    telephone: Optional[str] = None
    ecole: Optional[str] = None
    nom_parent: Optional[str] = None
    prenom_parent: Optional[str] = None
    numero_parent: Optional[str] = None
    lieu_habitation: Optional[str] = None
    nombre_participations: Optional[int] = Field(None, ge=0)
    numero_urgence: Optional[str] = None
    statut: Optional[StatutInscription] = None
    niveau_formation: Optional[NiveauFormation] = None
    dortoir_id: Optional[str] = None
    chef_quartier_id: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class AttributionDortoir(BaseModel):
    dortoir_id: str
    niveau_formation: Optional[NiveauFormation] = None


class SelectionIds(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class ResultatValidationGroupee(BaseModel):
    validees: List[str] = []
    refusees: Dict[str, str] = {}


class InscriptionFilters(BaseModel):
    search: Optional[str] = None
    statut: Optional[StatutInscription] = None
    chef_quartier_id: Optional[str] = None
    niveau_formation: Optional[NiveauFormation] = None
    sexe: Optional[Sexe] = None
    type_inscription: Optional[TypeInscription] = None


class InscriptionRecente(BaseModel):
    id: str
    name: str
    time: datetime
    dortoir: Optional[str] = None


class InscriptionResume(BaseModel):
    id: str
    reference_id: Optional[str] = None
    nom: str
    prenom: str
    sexe: Optional[str] = None
    age: Optional[int] = None
    photo_url: Optional[str] = None
    type_inscription: Optional[str] = None
    dortoir_id: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)
