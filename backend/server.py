"""
Phoenix Tracker - API Backend
CRM multi-équipes: uplines, downlines, prospects, contacts, tâches.

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from config import CORS_ORIGINS, client, db
from services.session_cache import SessionRegistry

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("phoenix_tracker")

# Créer l'app
app = FastAPI(
    title="Phoenix Tracker",
    description="CRM de suivi de prospects pour équipes upline / downline",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Contextes de session par token (passés explicitement aux routes)
app.state.sessions = SessionRegistry()

# ==================== IMPORT DES ROUTES ====================

from routes import auth, prospects, contacts, tasks, stats

# Routes avec préfixe /api
app.include_router(auth.router, prefix="/api")
app.include_router(prospects.router, prefix="/api")
app.include_router(contacts.router, prefix="/api")
app.include_router(tasks.router, prefix="/api")
app.include_router(stats.router, prefix="/api")

# ==================== ROUTE RACINE ====================

@app.get("/")
async def root():
    return {
        "name": "Phoenix Tracker API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    logger.info("Phoenix Tracker démarré")

    if db is None:
        logger.warning("MONGO_URL absent: base de données indisponible")
        return

    await db.credentials.create_index("email", unique=True)
    await db.users.create_index("uid", unique=True)
    await db.users.create_index("teamId")
    await db.users.create_index([("userType", 1), ("uplineTeamId", 1)])
    await db.sessions.create_index("token")
    await db.sessions.create_index("expiresAt")
    await db.prospects.create_index([("teamId", 1), ("status", 1)])
    await db.prospects.create_index([("teamId", 1), ("createdBy", 1)])
    await db.contacts.create_index([("teamId", 1), ("state", 1)])
    await db.contacts.create_index([("teamId", 1), ("createdBy", 1)])
    await db.tasks.create_index([("teamId", 1), ("dueDate", 1)])
    await db.tasks.create_index([("teamId", 1), ("userId", 1)])
    await db.activity_logs.create_index("createdAt")

    logger.info("Index MongoDB créés")


@app.on_event("shutdown")
async def shutdown():
    if client is not None:
        client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
