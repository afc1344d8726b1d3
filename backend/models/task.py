"""
Phoenix Tracker - Modèle Tâche

completed est le seul indicateur de cycle de vie.
"overdue" et "due soon" sont calculés à la lecture, jamais stockés.
"""

from datetime import datetime, timedelta, timezone, date
from typing import Optional, Union, List, Set
import pytz
from pydantic import BaseModel, field_validator

DUE_SOON_WINDOW = timedelta(hours=2)


def parse_due_date(value: Union[str, datetime, date], tz_name: str = "UTC") -> str:
    """
    Normalise une échéance en ISO UTC.

    - "YYYY-MM-DD" → fin de journée (23:59:59) dans le fuseau tz_name
    - "YYYY-MM-DDTHH:MM[:SS]" sans fuseau → heure locale tz_name
    - datetime avec fuseau → converti en UTC
    """
    tz = pytz.timezone(tz_name)

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day, 23, 59, 59)
    else:
        raw = (value or "").strip()
        if not raw:
            raise ValueError("Échéance requise")
        if len(raw) == 10:
            d = date.fromisoformat(raw)
            dt = datetime(d.year, d.month, d.day, 23, 59, 59)
        else:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))

    if dt.tzinfo is None:
        dt = tz.localize(dt)

    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def due_datetime(task: dict) -> Optional[datetime]:
    """Échéance d'une tâche stockée (ISO ou ancien format {"seconds": ...})"""
    due = task.get("dueDate")
    if not due:
        return None
    if isinstance(due, dict) and "seconds" in due:
        return datetime.fromtimestamp(due["seconds"], tz=timezone.utc)
    if isinstance(due, datetime):
        return due if due.tzinfo else due.replace(tzinfo=timezone.utc)
    try:
        dt = datetime.fromisoformat(str(due).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def classify_task(task: dict, now: Optional[datetime] = None) -> Optional[str]:
    """
    "overdue" si échéance < now, "due_soon" si now <= échéance <= now + 2h.
    Une tâche terminée n'est jamais classée.
    """
    if task.get("completed"):
        return None
    due = due_datetime(task)
    if due is None:
        return None

    now = now or datetime.now(timezone.utc)
    if due < now:
        return "overdue"
    if due <= now + DUE_SOON_WINDOW:
        return "due_soon"
    return None


def upcoming_task_reminders(
    tasks: List[dict],
    user_id: str,
    already_notified: Set[str],
    now: Optional[datetime] = None
) -> List[dict]:
    """
    Tâches à rappeler: non terminées, échéance dans ]now, now + 2h],
    pas encore notifiées pour cet utilisateur. Marque les clés retournées.
    """
    now = now or datetime.now(timezone.utc)
    reminders = []

    for task in tasks:
        if not task.get("id") or task.get("completed"):
            continue
        due = due_datetime(task)
        if due is None:
            continue
        key = f"{user_id}-{task['id']}"
        if now < due <= now + DUE_SOON_WINDOW and key not in already_notified:
            already_notified.add(key)
            reminders.append(task)

    return reminders


class TaskCreate(BaseModel):
    title: str
    dueDate: str
    userId: Optional[str] = None  # assigné; défaut: créateur

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if not v or not v.strip():
            raise ValueError("Titre requis")
        return v.strip()


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    dueDate: Optional[str] = None
    completed: Optional[bool] = None
    userId: Optional[str] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if v is None or not v.strip():
            raise ValueError("Titre requis")
        return v.strip()

    @field_validator("completed")
    @classmethod
    def validate_completed(cls, v):
        if v is None:
            raise ValueError("completed doit valoir true ou false")
        return v
