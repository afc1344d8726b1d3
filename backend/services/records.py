"""
Phoenix Tracker - Services Prospects / Contacts / Tâches

Trois collections, même forme:
  create, get, update (merge $set), delete, list (filtres), live / subscribe

RÈGLES:
- Toute requête est filtrée par teamId (y compris update/delete par id)
- createdAt et createdBy posés à la création, jamais réécrits
- Auteur d'un enregistrement: createdBy (prospects, contacts), userId (tâches)
- `search` = sous-chaîne insensible à la casse, appliquée côté Python
  sur le sur-ensemble filtré par égalité (pas d'index texte)
- Les erreurs MongoDB remontent telles quelles à l'appelant
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from pymongo import ASCENDING, DESCENDING

from config import APP_TIMEZONE, now_iso, require_db
from models.contact import ContactCreate, ContactUpdate
from models.prospect import ProspectCreate, ProspectUpdate
from models.task import TaskCreate, TaskUpdate, classify_task, parse_due_date
from services.errors import NotFoundError, ValidationError
from services.live_query import LiveQuery, pump

logger = logging.getLogger("records")

MAX_RECORDS = 5000


def _schema_message(error: SchemaError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in error.errors()
    )


class RecordService:
    """Base CRUD d'une collection scopée par équipe"""

    collection_name: str = ""
    create_model = BaseModel
    update_model = BaseModel
    filter_fields: Tuple[str, ...] = ()
    author_field: str = "createdBy"
    search_fields: Tuple[str, ...] = ()
    sort: Tuple[str, int] = ("createdAt", DESCENDING)

    def __init__(self, db):
        self.db = db

    @property
    def collection(self):
        return require_db(self.db)[self.collection_name]

    # ---- validation ----

    def _validate(self, model, data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
        try:
            parsed = model(**(data or {}))
        except SchemaError as e:
            raise ValidationError(_schema_message(e))
        return parsed.model_dump(exclude_unset=partial)

    def _prepare_create(self, payload: Dict, created_by: Optional[str]) -> Dict:
        return payload

    def _prepare_update(self, payload: Dict) -> Dict:
        return payload

    # ---- CRUD ----

    async def create(self, team_id: str, record: Dict, created_by: Optional[str] = None) -> Dict:
        collection = self.collection
        if not team_id:
            raise ValidationError("teamId requis")

        payload = self._prepare_create(self._validate(self.create_model, record), created_by)
        doc = {
            "id": str(uuid.uuid4()),
            **payload,
            "teamId": team_id,
            "createdBy": created_by,
            "createdAt": now_iso()
        }
        await collection.insert_one(dict(doc))
        logger.info(f"{self.collection_name}: created {doc['id']} in team {team_id}")
        return doc

    async def get(self, team_id: str, record_id: str) -> Optional[Dict]:
        return await self.collection.find_one({"id": record_id, "teamId": team_id}, {"_id": 0})

    async def update(self, team_id: str, record_id: str, changes: Dict) -> Dict:
        collection = self.collection
        payload = self._prepare_update(self._validate(self.update_model, changes, partial=True))
        return await self._set(collection, team_id, record_id, payload)

    async def _set(self, collection, team_id: str, record_id: str, payload: Dict) -> Dict:
        payload["updatedAt"] = now_iso()
        result = await collection.update_one(
            {"id": record_id, "teamId": team_id},
            {"$set": payload}
        )
        if result.matched_count == 0:
            raise NotFoundError(f"{self.collection_name}: {record_id} introuvable")
        return await self.get(team_id, record_id)

    async def delete(self, team_id: str, record_id: str) -> None:
        result = await self.collection.delete_one({"id": record_id, "teamId": team_id})
        if result.deleted_count == 0:
            raise NotFoundError(f"{self.collection_name}: {record_id} introuvable")
        logger.info(f"{self.collection_name}: deleted {record_id} in team {team_id}")

    # ---- lecture filtrée ----

    def _query(self, team_id: str, filters: Dict) -> Dict:
        query = {"teamId": team_id}
        for key, value in filters.items():
            if key == "search" or value in (None, ""):
                continue
            if key not in self.filter_fields:
                raise ValidationError(f"Filtre inconnu: {key}")
            query[key] = value
        return query

    def _matches(self, doc: Dict, search: str) -> bool:
        needle = search.lower()
        return any(needle in str(doc.get(field) or "").lower() for field in self.search_fields)

    async def list(self, team_id: str, filters: Optional[Dict] = None) -> List[Dict]:
        collection = self.collection
        filters = filters or {}
        query = self._query(team_id, filters)

        docs = await collection.find(query, {"_id": 0}).sort(*self.sort).to_list(MAX_RECORDS)

        search = (filters.get("search") or "").strip()
        if search:
            docs = [d for d in docs if self._matches(d, search)]
        return docs

    async def list_by_author(self, team_id: str, author) -> List[Dict]:
        """author: uid, ou condition Mongo sur le champ auteur (ex: $nin)"""
        return await self.list(team_id, {self.author_field: author})

    def live(self, team_id: str, filters: Optional[Dict] = None) -> LiveQuery:
        """Requête temps réel; l'appelant doit la fermer (cancel / async with)"""
        collection = self.collection
        filters = dict(filters or {})
        self._query(team_id, filters)  # filtres invalides rejetés avant ouverture
        return LiveQuery(
            collection,
            lambda: self.list(team_id, filters),
            name=f"{self.collection_name}:{team_id}"
        )

    def subscribe(self, team_id: str, filters: Optional[Dict], on_change: Callable) -> Callable[[], None]:
        """Abonnement par callback; retourne la fonction de désabonnement"""
        return pump(self.live(team_id, filters), on_change)


class ProspectService(RecordService):
    collection_name = "prospects"
    create_model = ProspectCreate
    update_model = ProspectUpdate
    filter_fields = ("status", "assignedTo", "createdBy")
    search_fields = ("name", "email")

    def _prepare_create(self, payload: Dict, created_by: Optional[str]) -> Dict:
        payload["assignedTo"] = None
        return payload

    async def assign(self, team_id: str, record_id: str, assignee: Optional[str]) -> Dict:
        """Réassignation (admin): l'assigné doit appartenir à l'équipe"""
        collection = self.collection
        if assignee:
            member = await require_db(self.db).users.find_one(
                {"uid": assignee, "teamId": team_id}, {"_id": 0, "uid": 1}
            )
            if not member:
                raise ValidationError("assignee not in team")
        return await self._set(collection, team_id, record_id, {"assignedTo": assignee or None})


class ContactService(RecordService):
    collection_name = "contacts"
    create_model = ContactCreate
    update_model = ContactUpdate
    filter_fields = ("state", "job", "createdBy")
    search_fields = ("name", "surname", "phone")


class TaskService(RecordService):
    collection_name = "tasks"
    create_model = TaskCreate
    update_model = TaskUpdate
    filter_fields = ("userId", "completed")
    author_field = "userId"
    search_fields = ("title",)
    sort = ("dueDate", ASCENDING)

    def _due(self, value) -> str:
        try:
            return parse_due_date(value, APP_TIMEZONE)
        except ValueError as e:
            raise ValidationError(f"dueDate invalide: {e}")

    def _prepare_create(self, payload: Dict, created_by: Optional[str]) -> Dict:
        payload["dueDate"] = self._due(payload["dueDate"])
        payload["completed"] = False
        payload["userId"] = payload.get("userId") or created_by
        return payload

    def _prepare_update(self, payload: Dict) -> Dict:
        if "dueDate" in payload:
            payload["dueDate"] = self._due(payload["dueDate"])
        return payload

    @staticmethod
    def with_flags(tasks: List[Dict], now: Optional[datetime] = None) -> List[Dict]:
        """Ajoute overdue / dueSoon, calculés à la lecture"""
        now = now or datetime.now(timezone.utc)
        flagged = []
        for task in tasks:
            label = classify_task(task, now)
            flagged.append({**task, "overdue": label == "overdue", "dueSoon": label == "due_soon"})
        return flagged
