"""
Phoenix Tracker - Agrégation des statistiques

Vue équipe: un teamId.
Vue réseau (upline): part de l'upline + part de chaque downline dans l'équipe
partagée (enregistrements dont il est l'auteur), chargées en parallèle puis sommées.

RÈGLES:
- conversionRate = inscrits / total * 100, arrondi à 0.1; 0 si aucun prospect
- Réseau: conversionRate recalculé sur les totaux, jamais moyenné
- Un downline en échec compte pour zéro; l'appel réseau n'échoue jamais
  (StatsResult.status = "degraded" signale l'échec absorbé)
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from config import require_db
from models.prospect import ProspectStatus
from models.stats import DownlineOverview, Stats, StatsResult, StatsStatus
from services.errors import TRANSIENT_IO_ERRORS
from services.records import ContactService, ProspectService, TaskService
from services.team_resolver import get_downlines

logger = logging.getLogger("aggregation")

FOLLOW_UP_WINDOW = timedelta(days=7)


def conversion_rate(enrolled: int, total: int) -> float:
    if total == 0:
        return 0
    return round(enrolled / total * 100, 1)


def _follow_up_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def fold_team_stats(prospects: List[Dict], tasks: List[Dict], now: datetime) -> Stats:
    """Statistiques d'une équipe à partir de ses documents"""
    by_status = Counter(p.get("status") or ProspectStatus.NOUVEAU.value for p in prospects)
    total = len(prospects)

    week_end = now + FOLLOW_UP_WINDOW
    follow_ups = 0
    for prospect in prospects:
        follow_up = _follow_up_datetime(prospect.get("nextFollowUp"))
        if follow_up is not None and now <= follow_up <= week_end:
            follow_ups += 1

    return Stats(
        totalProspects=total,
        prospectsByStatus=dict(by_status),
        activeTasks=sum(1 for t in tasks if not t.get("completed")),
        conversionRate=conversion_rate(by_status.get(ProspectStatus.INSCRIT.value, 0), total),
        thisWeekFollowUps=follow_ups,
    )


def merge_stats(parts: Iterable[Stats]) -> Stats:
    """Somme des compteurs, fusion par statut, taux recalculé"""
    by_status = Counter()
    total = active = follow_ups = 0
    for part in parts:
        total += part.totalProspects
        active += part.activeTasks
        follow_ups += part.thisWeekFollowUps
        by_status.update(part.prospectsByStatus)

    return Stats(
        totalProspects=total,
        prospectsByStatus=dict(by_status),
        activeTasks=active,
        conversionRate=conversion_rate(by_status.get(ProspectStatus.INSCRIT.value, 0), total),
        thisWeekFollowUps=follow_ups,
    )


async def _fetch_team_stats(db, team_id: str, now: datetime, author=None) -> Stats:
    """author None → toute l'équipe; sinon seuls les enregistrements de cet auteur"""
    prospects_service, tasks_service = ProspectService(db), TaskService(db)
    if author is None:
        prospects, tasks = await asyncio.gather(
            prospects_service.list(team_id),
            tasks_service.list(team_id),
        )
    else:
        prospects, tasks = await asyncio.gather(
            prospects_service.list_by_author(team_id, author),
            tasks_service.list_by_author(team_id, author),
        )
    return fold_team_stats(prospects, tasks, now)


async def compute_team_stats(db, team_id: str, now: Optional[datetime] = None) -> StatsResult:
    """Statistiques d'une équipe; échec I/O → zéros, statut degraded"""
    require_db(db)
    now = now or datetime.now(timezone.utc)

    try:
        stats = await _fetch_team_stats(db, team_id, now)
    except TRANSIENT_IO_ERRORS as e:
        logger.warning(f"Team stats failed for {team_id}: {e}")
        return StatsResult(
            status=StatsStatus.DEGRADED,
            stats=Stats(),
            reason=f"team fetch failed: {e}",
            failedTeams=[team_id],
        )

    return StatsResult(stats=stats)


async def compute_network_stats(db, upline_team_id: str, now: Optional[datetime] = None) -> StatsResult:
    """
    Statistiques réseau d'un upline (teamId == personalTeamId pour un upline).

    Les downlines écrivent dans l'équipe partagée: la part d'un downline est
    ce qu'il a créé dans son teamId, la part de l'upline est le reste de
    l'équipe. Les parts sont disjointes et leur somme vaut le total.
    """
    require_db(db)
    now = now or datetime.now(timezone.utc)

    try:
        downlines = await get_downlines(db, upline_team_id)
    except Exception as e:
        logger.warning(f"Downline roster failed for {upline_team_id}: {e}")
        return StatsResult(
            status=StatsStatus.DEGRADED,
            stats=Stats(totalDownlines=0),
            reason=f"roster fetch failed: {e}",
            failedTeams=[upline_team_id],
        )

    downline_uids = [d["uid"] for d in downlines]
    fetches = [_fetch_team_stats(db, upline_team_id, now, author={"$nin": downline_uids})]
    for downline in downlines:
        team_id = downline.get("teamId") or upline_team_id
        fetches.append(_fetch_team_stats(db, team_id, now, author=downline["uid"]))

    results = await asyncio.gather(*fetches, return_exceptions=True)

    parts = []
    failed_teams = []
    failed_downlines = []
    for owner, result in zip([None] + downline_uids, results):
        if isinstance(result, Exception):
            logger.warning(f"Network stats: {owner or upline_team_id} counted as zero: {result}")
            if owner is None:
                failed_teams.append(upline_team_id)
            else:
                failed_downlines.append(owner)
        elif isinstance(result, BaseException):
            raise result
        else:
            parts.append(result)

    stats = merge_stats(parts)
    stats.totalDownlines = len(downlines)

    if failed_teams or failed_downlines:
        return StatsResult(
            status=StatsStatus.DEGRADED,
            stats=stats,
            reason=f"{len(failed_teams) + len(failed_downlines)}/{len(results)} fetches failed",
            failedTeams=failed_teams,
            failedDownlines=failed_downlines,
        )

    logger.info(
        f"Network stats for {upline_team_id}: {stats.totalProspects} prospects, "
        f"{stats.totalDownlines} downlines"
    )
    return StatsResult(stats=stats)


async def _downline_overview(db, downline: Dict) -> DownlineOverview:
    """Compteurs des enregistrements créés par le downline dans son équipe"""
    overview = DownlineOverview(
        uid=downline.get("uid", ""),
        name=downline.get("name") or "",
        email=downline.get("email") or "",
        teamId=downline.get("teamId") or "",
        personalTeamId=downline.get("personalTeamId") or "",
    )
    if not overview.teamId:
        return overview

    try:
        prospects, contacts, tasks = await asyncio.gather(
            ProspectService(db).list_by_author(overview.teamId, overview.uid),
            ContactService(db).list_by_author(overview.teamId, overview.uid),
            TaskService(db).list_by_author(overview.teamId, overview.uid),
        )
    except TRANSIENT_IO_ERRORS as e:
        logger.warning(f"Downline overview failed for {overview.uid}: {e}")
        overview.degraded = True
        return overview

    overview.prospects = len(prospects)
    overview.contacts = len(contacts)
    overview.tasks = len(tasks)
    overview.completedTasks = sum(1 for t in tasks if t.get("completed"))
    overview.pendingTasks = overview.tasks - overview.completedTasks
    return overview


async def get_downline_overview(db, upline_team_id: str) -> List[DownlineOverview]:
    """Compteurs par downline (page réseau); roster indisponible → liste vide"""
    require_db(db)
    try:
        downlines = await get_downlines(db, upline_team_id)
    except TRANSIENT_IO_ERRORS as e:
        logger.warning(f"Downline roster failed for {upline_team_id}: {e}")
        return []

    return list(await asyncio.gather(*(_downline_overview(db, d) for d in downlines)))
