"""
Service de journalisation des activités
"""

import logging
import uuid

from config import now_iso
from services.errors import TRANSIENT_IO_ERRORS

logger = logging.getLogger("activity")


async def log_activity(
    db,
    user: dict,
    action: str,
    entity_type: str,
    entity_id: str = None,
    details: dict = None
):
    """
    Enregistre une activité dans le journal.

    Actions: signup, login, logout, migrate, create, update, delete, assign
    Entity types: user, prospect, contact, task

    Le journal est un effet secondaire: un échec d'écriture est loggé, pas propagé.
    """
    log_entry = {
        "id": str(uuid.uuid4()),
        "uid": user.get("uid", "system"),
        "email": user.get("email", "system"),
        "teamId": user.get("teamId"),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "details": details or {},
        "createdAt": now_iso()
    }

    try:
        await db.activity_logs.insert_one(log_entry)
    except TRANSIENT_IO_ERRORS as e:
        logger.warning(f"Activity log write failed ({action}): {e}")
    return log_entry
