"""
Configuration et utilitaires partagés
"""

import os
import hashlib
import secrets
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'phoenix_tracker')

# Sans MONGO_URL, le client reste à None: chaque service échoue avec UnavailableError
client = AsyncIOMotorClient(MONGO_URL) if MONGO_URL else None
db = client[DB_NAME] if client is not None else None

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

# Sessions
SESSION_TTL_DAYS = int(os.environ.get('SESSION_TTL_DAYS', '7'))
SESSION_SNAPSHOT_DIR = Path(
    os.environ.get('SESSION_SNAPSHOT_DIR', str(Path.home() / '.phoenix_tracker' / 'sessions'))
)
SNAPSHOT_MAX_AGE_HOURS = int(os.environ.get('SNAPSHOT_MAX_AGE_HOURS', '24'))
AUTH_LOADING_TIMEOUT = float(os.environ.get('AUTH_LOADING_TIMEOUT', '2.0'))

# Échéances des tâches (date seule = fin de journée dans ce fuseau)
APP_TIMEZONE = os.environ.get('APP_TIMEZONE', 'UTC')

TEAM_ID_ALPHABET = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789'
TEAM_ID_LENGTH = 8
LEGACY_TEAM_ID = 'default-team'


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash un mot de passe avec SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Génère un token de session sécurisé"""
    return secrets.token_urlsafe(32)

def generate_team_id() -> str:
    """
    Génère un code équipe de 8 caractères [A-Z0-9].
    Pas de vérification d'unicité: une collision reste possible (rare).
    """
    return ''.join(secrets.choice(TEAM_ID_ALPHABET) for _ in range(TEAM_ID_LENGTH))

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()

def require_db(database):
    """
    Retourne la base reçue ou lève UnavailableError.
    Appelé en premier par chaque opération de service.
    """
    from services.errors import UnavailableError

    if database is None:
        raise UnavailableError("Base de données non configurée (MONGO_URL manquant)")
    return database


async def get_db():
    """Dépendance FastAPI: la base configurée (surchargée dans les tests)"""
    return db
