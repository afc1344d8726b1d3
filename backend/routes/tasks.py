"""
Routes pour les Tâches

overdue / dueSoon sont ajoutés à chaque lecture (jamais stockés).
/tasks/reminders: tâches qui arrivent à échéance dans les 2h, chacune
renvoyée une seule fois par session.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket

from config import get_db
from models.task import TaskCreate, TaskUpdate, upcoming_task_reminders
from routes.auth import get_team_context
from routes.common import service_errors, stream_live
from services.activity_logger import log_activity
from services.records import TaskService
from services.session_cache import SessionContext

router = APIRouter(prefix="/tasks", tags=["Tâches"])


def _actor(context: SessionContext) -> dict:
    return {"uid": context.uid, "email": context.principal.email, "teamId": context.team_id}


def _filters(user_id: Optional[str], completed: Optional[bool], search: Optional[str]) -> dict:
    return {"userId": user_id, "completed": completed, "search": search}


@router.get("")
async def list_tasks(
    userId: Optional[str] = None,
    completed: Optional[bool] = None,
    search: Optional[str] = None,
    context: SessionContext = Depends(get_team_context),
    db=Depends(get_db)
):
    with service_errors():
        tasks = await TaskService(db).list(context.team_id, _filters(userId, completed, search))
    return {"tasks": TaskService.with_flags(tasks), "count": len(tasks)}


@router.post("")
async def create_task(data: TaskCreate, context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    with service_errors():
        task = await TaskService(db).create(context.team_id, data.model_dump(), created_by=context.uid)
    await log_activity(db, _actor(context), "create", "task", task["id"], {"dueDate": task["dueDate"]})
    return {"success": True, "task": TaskService.with_flags([task])[0]}


@router.get("/reminders")
async def task_reminders(context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    """Rappels à afficher pour l'utilisateur courant (déjà notifiés exclus)"""
    with service_errors():
        tasks = await TaskService(db).list(context.team_id, {"userId": context.uid, "completed": False})
    reminders = upcoming_task_reminders(tasks, context.uid, context.notified)
    return {"reminders": reminders, "count": len(reminders)}


@router.websocket("/live")
async def tasks_live(
    websocket: WebSocket,
    token: str = "",
    userId: Optional[str] = None,
    completed: Optional[bool] = None,
    search: Optional[str] = None,
    db=Depends(get_db)
):
    await stream_live(
        websocket, db, token,
        lambda context: TaskService(db).live(context.team_id, _filters(userId, completed, search)),
        transform=TaskService.with_flags
    )


@router.get("/{task_id}")
async def get_task(task_id: str, context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    with service_errors():
        task = await TaskService(db).get(context.team_id, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Tâche non trouvée")
    return TaskService.with_flags([task])[0]


@router.put("/{task_id}")
async def update_task(
    task_id: str,
    data: TaskUpdate,
    context: SessionContext = Depends(get_team_context),
    db=Depends(get_db)
):
    with service_errors():
        changes = data.model_dump(exclude_unset=True)
        task = await TaskService(db).update(context.team_id, task_id, changes)
    action = "complete" if changes.get("completed") is True else "update"
    await log_activity(db, _actor(context), action, "task", task_id, {"fields": sorted(changes)})
    return {"success": True, "task": TaskService.with_flags([task])[0]}


@router.delete("/{task_id}")
async def delete_task(task_id: str, context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    with service_errors():
        await TaskService(db).delete(context.team_id, task_id)
    await log_activity(db, _actor(context), "delete", "task", task_id)
    return {"success": True}
