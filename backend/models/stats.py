"""
Phoenix Tracker - Statistiques tableau de bord

StatsResult porte explicitement la variante "degraded": l'appelant distingue
un vrai zéro d'un échec absorbé.
"""

from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel


class Stats(BaseModel):
    totalProspects: int = 0
    prospectsByStatus: Dict[str, int] = {}
    activeTasks: int = 0
    conversionRate: float = 0
    thisWeekFollowUps: int = 0
    totalDownlines: Optional[int] = None  # vue réseau uniquement


class StatsStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"


class StatsResult(BaseModel):
    status: StatsStatus = StatsStatus.OK
    stats: Stats
    reason: Optional[str] = None
    failedTeams: List[str] = []
    failedDownlines: List[str] = []  # uid des downlines comptés pour zéro

    @property
    def degraded(self) -> bool:
        return self.status == StatsStatus.DEGRADED


class DownlineOverview(BaseModel):
    uid: str
    name: str = ""
    email: str = ""
    teamId: str = ""
    personalTeamId: str = ""
    prospects: int = 0
    contacts: int = 0
    tasks: int = 0
    completedTasks: int = 0
    pendingTasks: int = 0
    degraded: bool = False
