"""
Phoenix Tracker - Cache de session / profil

SessionContext: identité résolue d'une session authentifiée, passée
explicitement aux routes (pas de singleton global).
  - un seul écrivain: resolve() (événement d'authentification)
  - UNRESOLVED → RESOLVING → RESOLVED | DEGRADED
  - délai de garde: loading repasse à False après AUTH_LOADING_TIMEOUT
    même si la résolution n'a pas abouti (champs éventuellement nuls)

SnapshotStore: petit JSON local par session {uid, email, displayName, timestamp}
+ contexte d'équipe, valable 24h, supprimé au logout ou s'il est illisible.
"""

import asyncio
import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Dict, Optional, Set

from config import AUTH_LOADING_TIMEOUT, SESSION_SNAPSHOT_DIR, SNAPSHOT_MAX_AGE_HOURS
from models.auth import Principal, Resolution, ResolutionState, UserIdentity
from services.team_resolver import fallback_resolution, resolve_on_authentication

logger = logging.getLogger("session_cache")

SNAPSHOT_REQUIRED_FIELDS = ("uid", "email", "timestamp", "role", "userType", "teamId")


# ==================== SNAPSHOT LOCAL ====================

class SnapshotStore:
    """Stockage clé-valeur JSON sur disque local (un fichier par session)"""

    def __init__(self, directory: Path = SESSION_SNAPSHOT_DIR, max_age_hours: int = SNAPSHOT_MAX_AGE_HOURS):
        self.directory = Path(directory)
        self.max_age_ms = max_age_hours * 60 * 60 * 1000

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode()).hexdigest()
        return self.directory / f"{digest}.json"

    def save(self, key: str, snapshot: Dict) -> None:
        data = {**snapshot, "timestamp": int(time.time() * 1000)}
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._path(key).write_text(json.dumps(data), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Snapshot save failed: {e}")

    def load(self, key: str) -> Optional[Dict]:
        """Snapshot valide ou None (expiré/incomplet/illisible → supprimé)"""
        path = self._path(key)
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Snapshot unreadable, removing: {e}")
            self.delete(key)
            return None

        if not isinstance(data, dict) or any(not data.get(f) for f in SNAPSHOT_REQUIRED_FIELDS):
            logger.info("Stored session invalid, removing")
            self.delete(key)
            return None

        if time.time() * 1000 - data["timestamp"] >= self.max_age_ms:
            logger.info("Stored session expired, removing")
            self.delete(key)
            return None

        return data

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Snapshot delete failed: {e}")


# ==================== CONTEXTE DE SESSION ====================

class SessionContext:
    """Modèle de lecture de l'identité courante d'une session"""

    def __init__(self, loading_timeout: float = AUTH_LOADING_TIMEOUT):
        self.loading_timeout = loading_timeout
        self.principal: Optional[Principal] = None
        self.identity: Optional[UserIdentity] = None
        self.state = ResolutionState.UNRESOLVED
        self.reason: Optional[str] = None
        self.loading = True
        self._loaded = asyncio.Event()
        self.notified: Set[str] = set()  # rappels de tâches déjà envoyés
        self._timer = None

    # ---- lecture ----

    @property
    def uid(self) -> Optional[str]:
        return self.principal.uid if self.principal else None

    @property
    def team_id(self) -> Optional[str]:
        return self.identity.teamId if self.identity else None

    @property
    def personal_team_id(self) -> Optional[str]:
        return self.identity.personalTeamId if self.identity else None

    @property
    def user_type(self) -> Optional[str]:
        return self.identity.userType if self.identity else None

    @property
    def role(self) -> Optional[str]:
        return self.identity.role if self.identity else None

    async def wait_loaded(self):
        """Fin du chargement: résolution terminée ou délai de garde écoulé"""
        await self._loaded.wait()

    # ---- écriture (événement d'authentification uniquement) ----

    def begin(self, principal: Principal):
        """UNRESOLVED → RESOLVING; arme le délai de garde"""
        if self.principal and self.principal.uid != principal.uid:
            logger.info("User changed, resetting state")
            self.notified = set()
        self.principal = principal
        self.identity = None
        self.reason = None
        self.state = ResolutionState.RESOLVING
        self.loading = True
        self._loaded.clear()
        self._arm_timer()

    def apply(self, resolution: Resolution):
        """RESOLVING → RESOLVED | DEGRADED"""
        self._cancel_timer()
        self.identity = resolution.identity
        self.state = resolution.state
        self.reason = resolution.reason
        self._finish_loading()

    async def resolve(self, db, principal: Principal) -> Resolution:
        self.begin(principal)
        try:
            resolution = await resolve_on_authentication(db, principal)
        except Exception as e:
            # Jamais bloqué en RESOLVING: toute erreur aboutit à DEGRADED
            logger.exception(f"Auth resolution failed for {principal.uid}")
            resolution = fallback_resolution(principal, f"resolution failed: {e}")
        # Un logout pendant la résolution rend le résultat caduc
        if self.principal is principal:
            self.apply(resolution)
        return resolution

    def clear(self):
        """Logout: tout est vidé"""
        self._cancel_timer()
        self.notified = set()
        self.principal = None
        self.identity = None
        self.reason = None
        self.state = ResolutionState.UNRESOLVED
        self._finish_loading()

    def _arm_timer(self):
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.loading_timeout, self._force_loaded)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _force_loaded(self):
        self._timer = None
        if self.loading:
            logger.warning(f"Auth resolution still pending after {self.loading_timeout}s, force completing loading")
            self._finish_loading()

    def _finish_loading(self):
        self.loading = False
        self._loaded.set()

    # ---- snapshot ----

    def snapshot(self) -> Dict:
        identity = self.identity
        return {
            "uid": self.uid,
            "email": self.principal.email if self.principal else None,
            "displayName": self.principal.displayName if self.principal else None,
            "role": identity.role if identity else None,
            "userType": identity.userType if identity else None,
            "teamId": identity.teamId if identity else None,
            "personalTeamId": identity.personalTeamId if identity else None,
        }

    @classmethod
    def from_snapshot(cls, data: Dict, loading_timeout: float = AUTH_LOADING_TIMEOUT) -> "SessionContext":
        context = cls(loading_timeout)
        context.principal = Principal(uid=data["uid"], email=data["email"], displayName=data.get("displayName"))
        context.identity = UserIdentity(
            uid=data["uid"],
            email=data["email"],
            name=data.get("displayName") or "",
            role=data["role"],
            userType=data["userType"],
            teamId=data["teamId"],
            personalTeamId=data.get("personalTeamId") or data["teamId"],
        )
        context.state = ResolutionState.RESOLVED
        context._finish_loading()
        return context


# ==================== REGISTRE (app.state.sessions) ====================

class SessionRegistry:
    """Contextes par token de session, réhydratés depuis les snapshots"""

    def __init__(self, snapshots: Optional[SnapshotStore] = None, loading_timeout: float = AUTH_LOADING_TIMEOUT):
        self.snapshots = snapshots or SnapshotStore()
        self.loading_timeout = loading_timeout
        self._contexts: Dict[str, SessionContext] = {}
        self._pending = set()

    def get(self, token: str) -> Optional[SessionContext]:
        context = self._contexts.get(token)
        if context is None:
            data = self.snapshots.load(token)
            if data:
                logger.info("Initializing session from stored snapshot")
                context = SessionContext.from_snapshot(data, self.loading_timeout)
                self._contexts[token] = context
        return context

    async def authenticate(self, token: str, db, principal: Principal) -> SessionContext:
        """
        Lance la résolution et attend la fin du chargement (résolution ou délai).
        La résolution continue en arrière-plan si le délai expire.
        """
        context = self._contexts.get(token) or SessionContext(self.loading_timeout)
        self._contexts[token] = context
        context.begin(principal)

        task = asyncio.create_task(self._resolve(token, context, db, principal))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        await context.wait_loaded()
        return context

    async def _resolve(self, token: str, context: SessionContext, db, principal: Principal):
        resolution = await context.resolve(db, principal)
        if self._contexts.get(token) is context and context.state == ResolutionState.RESOLVED:
            self.snapshots.save(token, context.snapshot())
        return resolution

    def close(self, token: str):
        context = self._contexts.pop(token, None)
        if context is not None:
            context.clear()
        self.snapshots.delete(token)

    def __len__(self):
        return len(self._contexts)
