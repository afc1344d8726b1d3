"""
Phoenix Tracker - Modèles Auth & Utilisateurs
Upline/downline + code équipe.

Un upline dirige une équipe: teamId == personalTeamId.
Un downline partage le teamId de son upline (accès aux données)
et possède son propre personalTeamId pour son sous-réseau.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class UserType(str, Enum):
    UPLINE = "upline"
    DOWNLINE = "downline"


VALID_USER_TYPES = [t.value for t in UserType]

# Champ legacy conservé pour compatibilité
VALID_ROLES = ["member", "upline", "downline", "admin"]


class ResolutionState(str, Enum):
    """Cycle de vie de la résolution d'identité d'une session"""
    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    DEGRADED = "degraded"  # valeurs par défaut, terminal jusqu'au prochain login


class SignupRequest(BaseModel):
    email: str = ""
    password: str = ""
    confirm_password: Optional[str] = None
    name: str = ""
    user_type: Optional[str] = None
    upline_team_id: Optional[str] = None


class UserLogin(BaseModel):
    email: str
    password: str


class Principal(BaseModel):
    """Identité authentifiée (credential vérifié ou fournisseur OAuth)"""
    uid: str
    email: str
    displayName: Optional[str] = None


class UserIdentity(BaseModel):
    """Document users, tel que stocké"""
    model_config = ConfigDict(extra="ignore")  # Ignore MongoDB's _id field

    uid: str
    name: str = ""
    email: str = ""
    role: str = "member"
    userType: str = UserType.UPLINE.value
    teamId: str
    personalTeamId: str
    uplineTeamId: Optional[str] = None
    createdAt: str = ""

    @property
    def is_upline(self) -> bool:
        return self.userType == UserType.UPLINE.value


class Resolution(BaseModel):
    """Résultat de resolve_on_authentication"""
    identity: UserIdentity
    state: ResolutionState = ResolutionState.RESOLVED
    reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.state == ResolutionState.DEGRADED
