"""
Phoenix Tracker - Modèle Contact

Carnet de contacts de l'équipe. Même modèle de propriété que les prospects,
sans statut. Filtres indexés: state (gouvernorat), job.
"""

from typing import Optional, Union
from pydantic import BaseModel, field_validator


VALID_JOBS = ["engineer", "teacher", "doctor", "business", "other"]

# Gouvernorats (codes stockés)
VALID_STATES = [
    "tunis", "ariana", "ben_arous", "manouba", "nabeul", "zaghouan",
    "bizerte", "beja", "jendouba", "kef", "siliana", "sousse",
    "monastir", "mahdia", "sfax", "kairouan", "kasserine", "sidi_bouzid",
    "gabes", "medenine", "tataouine", "gafsa", "tozeur", "kebili",
]


def _check_job(v):
    if v and v not in VALID_JOBS:
        raise ValueError(f"Métier invalide: {v}. Valides: {VALID_JOBS}")
    return v


def _check_state(v):
    if v and v not in VALID_STATES:
        raise ValueError(f"Gouvernorat invalide: {v}")
    return v


class ContactCreate(BaseModel):
    name: str
    surname: str = ""
    age: Optional[Union[int, str]] = ""
    phone: str = ""
    email: str = ""
    job: str = ""
    jobOther: str = ""  # seulement si job == "other"
    state: str = ""

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Nom requis")
        return v.strip()

    @field_validator("job")
    @classmethod
    def validate_job(cls, v):
        return _check_job(v)

    @field_validator("state")
    @classmethod
    def validate_state(cls, v):
        return _check_state(v)


class ContactUpdate(BaseModel):
    name: Optional[str] = None
    surname: Optional[str] = None
    age: Optional[Union[int, str]] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    job: Optional[str] = None
    jobOther: Optional[str] = None
    state: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if v is None or not v.strip():
            raise ValueError("Nom requis")
        return v.strip()

    @field_validator("job")
    @classmethod
    def validate_job(cls, v):
        return _check_job(v)

    @field_validator("state")
    @classmethod
    def validate_state(cls, v):
        return _check_state(v)


def display_job(contact: dict) -> str:
    """Libellé métier: jobOther quand job == other"""
    if contact.get("job") == "other":
        return contact.get("jobOther") or "Other"
    return contact.get("job") or ""
