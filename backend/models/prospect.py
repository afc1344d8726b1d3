"""
Phoenix Tracker - Modèle Prospect

Statuts libres (aucune transition imposée): nouveau, contacté, intéressé, inscrit, perdu.
Toute requête DOIT être filtrée par teamId.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, field_validator


class ProspectStatus(str, Enum):
    NOUVEAU = "nouveau"
    CONTACTE = "contacté"
    INTERESSE = "intéressé"
    INSCRIT = "inscrit"      # compte pour le taux de conversion
    PERDU = "perdu"


VALID_PROSPECT_STATUSES = [s.value for s in ProspectStatus]


def _check_status(v):
    if v is not None and v not in VALID_PROSPECT_STATUSES:
        raise ValueError(f"Statut invalide: {v}. Valides: {VALID_PROSPECT_STATUSES}")
    return v


def _check_follow_up(v):
    if v:
        try:
            datetime.fromisoformat(v.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(f"Date de relance invalide: {v}")
    return v or None


class ProspectCreate(BaseModel):
    """Création: assignedTo reste null (réassignation via assign, admin)"""
    name: str
    phone: str = ""
    email: str = ""
    status: str = ProspectStatus.NOUVEAU.value
    notes: str = ""
    nextFollowUp: Optional[str] = None  # date ISO (YYYY-MM-DD ou datetime)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        return _check_status(v)

    @field_validator("nextFollowUp")
    @classmethod
    def validate_follow_up(cls, v):
        return _check_follow_up(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Nom requis")
        return v.strip()


class ProspectUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    nextFollowUp: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        # null explicite refusé; champ absent non validé
        if v is None or not v.strip():
            raise ValueError("Nom requis")
        return v.strip()

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        return _check_status(v)

    @field_validator("nextFollowUp")
    @classmethod
    def validate_follow_up(cls, v):
        return _check_follow_up(v)


class AssignRequest(BaseModel):
    assignedTo: Optional[str] = None
