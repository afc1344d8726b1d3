"""
Phoenix Tracker - Fixtures de test

FakeDatabase: base MongoDB en mémoire avec l'API motor utilisée par les
services (find/sort/to_list, find_one, insert_one, update_one, delete_one,
count_documents, create_index, watch).

Injection de pannes:
  db.fail_teams        lectures filtrées sur ces teamId → AutoReconnect
  db.fail_reads        collections dont toute lecture échoue
  db.fail_writes       collections dont toute écriture échoue
  db.fail_authors      lectures filtrées sur ces auteurs (createdBy / userId)
"""

import asyncio
import copy
from types import SimpleNamespace

import pytest
from pymongo.errors import AutoReconnect, DuplicateKeyError

from config import get_db, hash_password, now_iso
from services.session_cache import SessionRegistry, SnapshotStore


# ==================== BASE EN MÉMOIRE ====================

def _match_value(actual, expected) -> bool:
    if isinstance(expected, dict) and any(k.startswith("$") for k in expected):
        for op, value in expected.items():
            if op == "$gt" and not (actual is not None and actual > value):
                return False
            if op == "$gte" and not (actual is not None and actual >= value):
                return False
            if op == "$lt" and not (actual is not None and actual < value):
                return False
            if op == "$lte" and not (actual is not None and actual <= value):
                return False
            if op == "$in" and actual not in value:
                return False
            if op == "$nin" and actual in value:
                return False
        return True
    return actual == expected


def matches(doc: dict, query: dict) -> bool:
    return all(_match_value(doc.get(k), v) for k, v in (query or {}).items())


def project(doc: dict, projection: dict = None) -> dict:
    doc = copy.deepcopy(doc)
    projection = projection or {}
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        doc = {k: doc[k] for k in included if k in doc}
    elif projection.get("_id") == 0:
        doc.pop("_id", None)
    return doc


class FakeCursor:
    def __init__(self, collection, query, projection):
        self._collection = collection
        self._query = query
        self._projection = projection
        self._sort = None

    def sort(self, key, direction=1):
        self._sort = (key, direction)
        return self

    async def to_list(self, length=None):
        self._collection._check_read(self._query)
        docs = [d for d in self._collection.docs if matches(d, self._query)]
        if self._sort:
            key, direction = self._sort
            docs.sort(
                key=lambda d: (d.get(key) is None, str(d.get(key) or "")),
                reverse=direction < 0
            )
        docs = [project(d, self._projection) for d in docs]
        return docs[:length] if length else docs


class FakeChangeStream:
    def __init__(self, collection):
        self._collection = collection
        self._queue = asyncio.Queue()

    async def __aenter__(self):
        self._collection.streams.append(self._queue)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._collection.streams.remove(self._queue)

    def __aiter__(self):
        return self

    async def __anext__(self):
        event = await self._queue.get()
        if isinstance(event, Exception):
            raise event
        return event


class FakeCollection:
    def __init__(self, db, name):
        self.db = db
        self.name = name
        self.docs = []
        self.unique_fields = set()
        self.streams = []
        self._next_id = 1

    # ---- pannes ----

    def _check_read(self, query=None):
        if self.name in self.db.fail_reads:
            raise AutoReconnect(f"{self.name} read failed")
        if query and query.get("teamId") in self.db.fail_teams:
            raise AutoReconnect(f"team {query['teamId']} read failed")
        for field in ("createdBy", "userId"):
            author = (query or {}).get(field)
            if isinstance(author, str) and author in self.db.fail_authors:
                raise AutoReconnect(f"author {author} read failed")

    def _check_write(self):
        if self.name in self.db.fail_writes:
            raise AutoReconnect(f"{self.name} write failed")

    def _notify(self, operation):
        for queue in list(self.streams):
            queue.put_nowait({"operationType": operation})

    def break_streams(self, error: Exception):
        for queue in list(self.streams):
            queue.put_nowait(error)

    # ---- API motor ----

    def find(self, query=None, projection=None):
        return FakeCursor(self, query or {}, projection)

    async def find_one(self, query=None, projection=None):
        self._check_read(query)
        for doc in self.docs:
            if matches(doc, query):
                return project(doc, projection)
        return None

    async def count_documents(self, query):
        self._check_read(query)
        return sum(1 for d in self.docs if matches(d, query))

    async def insert_one(self, doc):
        self._check_write()
        for field in self.unique_fields:
            if any(d.get(field) == doc.get(field) for d in self.docs):
                raise DuplicateKeyError(f"duplicate {field}")
        doc["_id"] = self._next_id
        self._next_id += 1
        self.docs.append(copy.deepcopy(doc))
        self._notify("insert")
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, query, update):
        self._check_write()
        for doc in self.docs:
            if matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                self._notify("update")
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query):
        self._check_write()
        for i, doc in enumerate(self.docs):
            if matches(doc, query):
                del self.docs[i]
                self._notify("delete")
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def create_index(self, keys, unique=False, **kwargs):
        if unique and isinstance(keys, str):
            self.unique_fields.add(keys)
        return keys

    def watch(self, pipeline=None):
        return FakeChangeStream(self)


class FakeDatabase:
    def __init__(self):
        self._collections = {}
        self.fail_teams = set()
        self.fail_reads = set()
        self.fail_writes = set()
        self.fail_authors = set()

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(self, name)
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


# ==================== HELPERS ====================

def make_user(db, uid, user_type="upline", team_id="TEAM0001", personal_team_id=None,
              upline_team_id=None, role=None, email=None, password="secret123"):
    """Insère credential + document users directement (sans passer par l'inscription)"""
    email = email or f"{uid}@phoenix.test"
    db.credentials.docs.append({
        "uid": uid,
        "email": email,
        "password": hash_password(password),
        "displayName": uid,
        "createdAt": now_iso()
    })
    user = {
        "uid": uid,
        "name": uid,
        "email": email,
        "role": role or user_type,
        "userType": user_type,
        "teamId": team_id,
        "personalTeamId": personal_team_id or team_id,
        "uplineTeamId": upline_team_id,
        "createdAt": now_iso()
    }
    db.users.docs.append(dict(user))
    return user


# ==================== FIXTURES ====================

@pytest.fixture
def fake_db():
    db = FakeDatabase()
    db.credentials.unique_fields.add("email")
    return db


@pytest.fixture
def snapshots(tmp_path):
    return SnapshotStore(tmp_path / "sessions")


@pytest.fixture
def api(fake_db, snapshots, monkeypatch):
    """TestClient sur l'app complète, base en mémoire, un seul event loop"""
    from fastapi.testclient import TestClient
    import server

    monkeypatch.setattr(server, "db", fake_db)
    monkeypatch.setattr(server, "client", None)
    server.app.state.sessions = SessionRegistry(snapshots, loading_timeout=2.0)
    server.app.dependency_overrides[get_db] = lambda: fake_db

    with TestClient(server.app) as client:
        yield client

    server.app.dependency_overrides.clear()


def login(api, email, password="secret123") -> dict:
    response = api.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}
