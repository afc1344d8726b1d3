"""
Routes pour les statistiques du tableau de bord
"""

from fastapi import APIRouter, Depends, HTTPException

from config import get_db
from routes.auth import get_team_context
from routes.common import service_errors
from services.aggregation import compute_network_stats, compute_team_stats, get_downline_overview
from services.session_cache import SessionContext

router = APIRouter(prefix="/stats", tags=["Statistiques"])


def _require_upline(context: SessionContext) -> str:
    if context.user_type != "upline":
        raise HTTPException(status_code=403, detail="Vue réseau réservée aux uplines")
    return context.personal_team_id or context.team_id


def _payload(result) -> dict:
    return {**result.model_dump(mode="json"), "degraded": result.degraded}


@router.get("/team")
async def get_team_stats(context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    """
    Statistiques de l'équipe courante.
    Échec de lecture → zéros avec status "degraded".
    """
    with service_errors():
        result = await compute_team_stats(db, context.team_id)
    return _payload(result)


@router.get("/network")
async def get_network_stats(context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    """Part de l'upline + part de chaque downline dans l'équipe partagée"""
    team_id = _require_upline(context)
    with service_errors():
        result = await compute_network_stats(db, team_id)
    return _payload(result)


@router.get("/downlines")
async def get_downlines_overview(context: SessionContext = Depends(get_team_context), db=Depends(get_db)):
    """Compteurs prospects / contacts / tâches par downline"""
    team_id = _require_upline(context)
    with service_errors():
        overview = await get_downline_overview(db, team_id)
    return {
        "downlines": [d.model_dump() for d in overview],
        "count": len(overview),
        "degraded": any(d.degraded for d in overview)
    }
