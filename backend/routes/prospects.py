"""
Routes pour les Prospects
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket

from config import get_db
from models.prospect import AssignRequest, ProspectCreate, ProspectUpdate
from routes.auth import get_team_context, require_admin
from routes.common import service_errors, stream_live
from services.activity_logger import log_activity
from services.records import ProspectService
from services.session_cache import SessionContext

router = APIRouter(prefix="/prospects", tags=["Prospects"])


def _actor(context: SessionContext) -> dict:
    return {"uid": context.uid, "email": context.principal.email, "teamId": context.team_id}


@router.get("")
async def list_prospects(
    status: Optional[str] = None,
    assignedTo: Optional[str] = None,
    search: Optional[str] = None,
    context: SessionContext = Depends(get_team_context),
    db=Depends(get_db)
):
    filters = {"status": status, "assignedTo": assignedTo, "search": search}
    with service_errors():
        prospects = await ProspectService(db).list(context.team_id, filters)
    return {"prospects": prospects, "count": len(prospects)}


@router.post("")
async def create_prospect(data: ProspectCreate, context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    with service_errors():
        prospect = await ProspectService(db).create(context.team_id, data.model_dump(), created_by=context.uid)
    await log_activity(db, _actor(context), "create", "prospect", prospect["id"])
    return {"success": True, "prospect": prospect}


@router.websocket("/live")
async def prospects_live(
    websocket: WebSocket,
    token: str = "",
    status: Optional[str] = None,
    search: Optional[str] = None,
    db=Depends(get_db)
):
    """Snapshots temps réel des prospects de l'équipe (?token=...)"""
    await stream_live(
        websocket, db, token,
        lambda context: ProspectService(db).live(context.team_id, {"status": status, "search": search})
    )


@router.get("/{prospect_id}")
async def get_prospect(prospect_id: str, context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    with service_errors():
        prospect = await ProspectService(db).get(context.team_id, prospect_id)
    if not prospect:
        raise HTTPException(status_code=404, detail="Prospect non trouvé")
    return prospect


@router.put("/{prospect_id}")
async def update_prospect(
    prospect_id: str,
    data: ProspectUpdate,
    context: SessionContext = Depends(get_team_context),
    db=Depends(get_db)
):
    with service_errors():
        changes = data.model_dump(exclude_unset=True)
        prospect = await ProspectService(db).update(context.team_id, prospect_id, changes)
    await log_activity(db, _actor(context), "update", "prospect", prospect_id, {"fields": sorted(changes)})
    return {"success": True, "prospect": prospect}


@router.put("/{prospect_id}/assign")
async def assign_prospect(
    prospect_id: str,
    data: AssignRequest,
    context: SessionContext = Depends(require_admin),
    db=Depends(get_db)
):
    """Réassignation d'un prospect (admin)"""
    with service_errors():
        prospect = await ProspectService(db).assign(context.team_id, prospect_id, data.assignedTo)
    await log_activity(db, _actor(context), "assign", "prospect", prospect_id, {"assignedTo": data.assignedTo})
    return {"success": True, "prospect": prospect}


@router.delete("/{prospect_id}")
async def delete_prospect(prospect_id: str, context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    with service_errors():
        await ProspectService(db).delete(context.team_id, prospect_id)
    await log_activity(db, _actor(context), "delete", "prospect", prospect_id)
    return {"success": True}
