"""
Routes pour les Contacts
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket

from config import get_db
from models.contact import ContactCreate, ContactUpdate, display_job
from routes.auth import get_team_context
from routes.common import service_errors, stream_live
from services.activity_logger import log_activity
from services.records import ContactService
from services.session_cache import SessionContext

router = APIRouter(prefix="/contacts", tags=["Contacts"])


def _with_label(contacts: List[Dict]) -> List[Dict]:
    return [{**c, "jobLabel": display_job(c)} for c in contacts]


def _actor(context: SessionContext) -> dict:
    return {"uid": context.uid, "email": context.principal.email, "teamId": context.team_id}


@router.get("")
async def list_contacts(
    state: Optional[str] = None,
    job: Optional[str] = None,
    search: Optional[str] = None,
    context: SessionContext = Depends(get_team_context),
    db=Depends(get_db)
):
    """Contacts de l'équipe (filtres gouvernorat / métier, recherche nom/prénom/téléphone)"""
    with service_errors():
        contacts = await ContactService(db).list(context.team_id, {"state": state, "job": job, "search": search})
    return {"contacts": _with_label(contacts), "count": len(contacts)}


@router.post("")
async def create_contact(data: ContactCreate, context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    with service_errors():
        contact = await ContactService(db).create(context.team_id, data.model_dump(), created_by=context.uid)
    await log_activity(db, _actor(context), "create", "contact", contact["id"])
    return {"success": True, "contact": _with_label([contact])[0]}


@router.websocket("/live")
async def contacts_live(
    websocket: WebSocket,
    token: str = "",
    state: Optional[str] = None,
    job: Optional[str] = None,
    search: Optional[str] = None,
    db=Depends(get_db)
):
    await stream_live(
        websocket, db, token,
        lambda context: ContactService(db).live(context.team_id, {"state": state, "job": job, "search": search}),
        transform=_with_label
    )


@router.get("/{contact_id}")
async def get_contact(contact_id: str, context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    with service_errors():
        contact = await ContactService(db).get(context.team_id, contact_id)
    if not contact:
        raise HTTPException(status_code=404, detail="Contact non trouvé")
    return _with_label([contact])[0]


@router.put("/{contact_id}")
async def update_contact(
    contact_id: str,
    data: ContactUpdate,
    context: SessionContext = Depends(get_team_context),
    db=Depends(get_db)
):
    with service_errors():
        changes = data.model_dump(exclude_unset=True)
        contact = await ContactService(db).update(context.team_id, contact_id, changes)
    await log_activity(db, _actor(context), "update", "contact", contact_id, {"fields": sorted(changes)})
    return {"success": True, "contact": _with_label([contact])[0]}


@router.delete("/{contact_id}")
async def delete_contact(contact_id: str, context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    with service_errors():
        await ContactService(db).delete(context.team_id, contact_id)
    await log_activity(db, _actor(context), "delete", "contact", contact_id)
    return {"success": True}
