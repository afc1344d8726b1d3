"""
Phoenix Tracker - Models Package

Exports tous les modèles pour import facile
from models import ProspectCreate, TaskCreate, StatsResult, etc.
"""

# Auth / Utilisateurs
from .auth import (
    UserType,
    VALID_USER_TYPES,
    VALID_ROLES,
    ResolutionState,
    SignupRequest,
    UserLogin,
    Principal,
    UserIdentity,
    Resolution,
)

# Prospects
from .prospect import (
    ProspectStatus,
    VALID_PROSPECT_STATUSES,
    ProspectCreate,
    ProspectUpdate,
    AssignRequest,
)

# Contacts
from .contact import (
    VALID_JOBS,
    VALID_STATES,
    ContactCreate,
    ContactUpdate,
    display_job,
)

# Tâches
from .task import (
    DUE_SOON_WINDOW,
    TaskCreate,
    TaskUpdate,
    parse_due_date,
    classify_task,
    upcoming_task_reminders,
)

# Statistiques
from .stats import (
    Stats,
    StatsStatus,
    StatsResult,
    DownlineOverview,
)

__all__ = [
    # Auth
    "UserType",
    "VALID_USER_TYPES",
    "VALID_ROLES",
    "ResolutionState",
    "SignupRequest",
    "UserLogin",
    "Principal",
    "UserIdentity",
    "Resolution",
    # Prospects
    "ProspectStatus",
    "VALID_PROSPECT_STATUSES",
    "ProspectCreate",
    "ProspectUpdate",
    "AssignRequest",
    # Contacts
    "VALID_JOBS",
    "VALID_STATES",
    "ContactCreate",
    "ContactUpdate",
    "display_job",
    # Tâches
    "DUE_SOON_WINDOW",
    "TaskCreate",
    "TaskUpdate",
    "parse_due_date",
    "classify_task",
    "upcoming_task_reminders",
    # Statistiques
    "Stats",
    "StatsStatus",
    "StatsResult",
    "DownlineOverview",
]
