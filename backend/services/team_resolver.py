"""
Phoenix Tracker - Team Resolver

Établit à chaque inscription et à chaque authentification un tuple cohérent
{teamId, personalTeamId, userType, role}, et répare les documents legacy.

RÈGLES:
- Upline:   teamId == personalTeamId (code nouveau)
- Downline: teamId == teamId de l'upline (accès données partagé),
            personalTeamId = code nouveau (son propre réseau),
            uplineTeamId = personalTeamId de l'upline (lien roster)
- Aucune écriture tant que la validation de l'inscription n'est pas passée
- Échec de lecture à la résolution → valeurs par défaut (DEGRADED), pas de retry
"""

import logging
import uuid
from typing import Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from config import (
    LEGACY_TEAM_ID,
    generate_team_id,
    hash_password,
    now_iso,
    require_db,
)
from models.auth import (
    Principal,
    Resolution,
    ResolutionState,
    UserIdentity,
    UserType,
)
from services.activity_logger import log_activity
from services.errors import TRANSIENT_IO_ERRORS, ValidationError

logger = logging.getLogger("team_resolver")

MIN_PASSWORD_LENGTH = 6


# ==================== VÉRIFICATION UPLINE ====================

async def verify_upline_team_id(db, candidate: str) -> bool:
    """
    True si un utilisateur upline possède teamId == candidate.
    Lecture seule; False (pas d'erreur) si la base ne répond pas.
    """
    db = require_db(db)
    if not candidate:
        return False

    try:
        upline = await db.users.find_one(
            {"teamId": candidate, "userType": UserType.UPLINE.value},
            {"_id": 0, "uid": 1}
        )
    except TRANSIENT_IO_ERRORS as e:
        logger.warning(f"Upline verification failed for {candidate}: {e}")
        return False

    return upline is not None


# ==================== INSCRIPTION ====================

async def register_user(
    db,
    email: str,
    password: str,
    name: str,
    user_type: Optional[str] = None,
    upline_team_id: Optional[str] = None,
    confirm_password: Optional[str] = None
) -> UserIdentity:
    """
    Crée le credential et le document users.

    user_type omis ou invalide: accepté comme downline seulement si
    upline_team_id est valide, sinon "must specify upline/downline".
    """
    db = require_db(db)

    email = (email or "").strip().lower()
    name = (name or "").strip()
    upline_team_id = (upline_team_id or "").strip().upper() or None

    if not email or not password or not name:
        raise ValidationError("missing required signup fields")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("password too short")
    if confirm_password is not None and confirm_password != password:
        raise ValidationError("password mismatch")

    if user_type == UserType.UPLINE.value:
        upline_team_id = None
    elif user_type == UserType.DOWNLINE.value:
        if not upline_team_id:
            raise ValidationError("must specify upline/downline")
        if not await verify_upline_team_id(db, upline_team_id):
            raise ValidationError("invalid upline team id")
    else:
        if not upline_team_id or not await verify_upline_team_id(db, upline_team_id):
            raise ValidationError("must specify upline/downline")
        user_type = UserType.DOWNLINE.value

    existing = await db.credentials.find_one({"email": email}, {"_id": 0, "uid": 1})
    if existing:
        raise ValidationError("email already registered")

    new_id = generate_team_id()
    if user_type == UserType.UPLINE.value:
        team_id = new_id
        personal_team_id = new_id
    else:
        team_id = upline_team_id
        personal_team_id = new_id

    uid = str(uuid.uuid4())
    created_at = now_iso()

    try:
        await db.credentials.insert_one({
            "uid": uid,
            "email": email,
            "password": hash_password(password),
            "displayName": name,
            "createdAt": created_at
        })
    except DuplicateKeyError:
        raise ValidationError("email already registered")

    user_doc = {
        "uid": uid,
        "name": name,
        "email": email,
        "role": user_type,  # legacy
        "userType": user_type,
        "teamId": team_id,
        "personalTeamId": personal_team_id,
        "uplineTeamId": upline_team_id if user_type == UserType.DOWNLINE.value else None,
        "createdAt": created_at
    }
    await db.users.insert_one(dict(user_doc))

    logger.info(
        f"Created {user_type} user {email}: teamId={team_id}, "
        f"personalTeamId={personal_team_id}, uplineTeamId={upline_team_id or 'none'}"
    )
    await log_activity(db, user_doc, "signup", "user", uid, {"userType": user_type})

    return UserIdentity(**user_doc)


# ==================== MIGRATION LEGACY ====================

def migrate_user_record(user: Dict) -> Dict:
    """
    Calcule les champs à réécrire ($set) pour un document users.
    Fonction pure: ne modifie pas `user`. Vide si rien à migrer (idempotent).

    1. teamId == "default-team" → nouveau code pour teamId et personalTeamId
    2. teamId absent → nouveau code
    3. personalTeamId absent → nouveau code (downline) ou teamId (upline)
    4. userType absent → upline
    """
    updates = {}
    team_id = user.get("teamId")
    personal_team_id = user.get("personalTeamId")
    user_type = user.get("userType")

    if team_id == LEGACY_TEAM_ID:
        new_id = generate_team_id()
        updates["teamId"] = new_id
        updates["personalTeamId"] = new_id
        team_id = personal_team_id = new_id
    elif not team_id:
        team_id = generate_team_id()
        updates["teamId"] = team_id

    if not personal_team_id:
        if user_type == UserType.DOWNLINE.value:
            updates["personalTeamId"] = generate_team_id()
        else:
            updates["personalTeamId"] = team_id

    if not user_type:
        updates["userType"] = UserType.UPLINE.value

    return updates


def _default_user(principal: Principal) -> Dict:
    """Document synthétisé au premier login sans profil (ex: OAuth)"""
    team_id = generate_team_id()
    return {
        "uid": principal.uid,
        "name": principal.displayName or principal.email.split("@")[0],
        "email": principal.email,
        "role": "member",
        "userType": UserType.UPLINE.value,
        "teamId": team_id,
        "personalTeamId": team_id,
        "uplineTeamId": None,
        "createdAt": now_iso()
    }


def build_identity(user: Dict, principal: Principal) -> UserIdentity:
    """
    UserIdentity à partir d'un document users éventuellement legacy:
    les champs nuls ou mal typés reprennent la valeur du principal ou le défaut.
    """
    created_at = user.get("createdAt")
    return UserIdentity(
        uid=user.get("uid") or principal.uid,
        name=user.get("name") or principal.displayName or principal.email.split("@")[0],
        email=user.get("email") or principal.email,
        role=user.get("role") or "member",
        userType=user.get("userType") or UserType.UPLINE.value,
        teamId=user["teamId"],
        personalTeamId=user.get("personalTeamId") or user["teamId"],
        uplineTeamId=user.get("uplineTeamId") or None,
        createdAt=created_at if isinstance(created_at, str) else "",
    )


def fallback_resolution(principal: Principal, reason: str) -> Resolution:
    """Identité par défaut en mémoire, état DEGRADED"""
    return Resolution(
        identity=UserIdentity(**_default_user(principal)),
        state=ResolutionState.DEGRADED,
        reason=reason
    )


# ==================== RÉSOLUTION À L'AUTHENTIFICATION ====================

async def resolve_on_authentication(db, principal: Principal) -> Resolution:
    """
    Résout l'identité complète d'un principal authentifié.

    - Pas de document users → création (upline, role member, code nouveau)
    - Passe de migration à chaque résolution, écriture partielle si besoin
    - Échec de lecture → identité par défaut en mémoire, état DEGRADED
    """
    db = require_db(db)

    try:
        user = await db.users.find_one({"uid": principal.uid}, {"_id": 0})
    except TRANSIENT_IO_ERRORS as e:
        logger.warning(f"Failed to read user {principal.uid}, using defaults: {e}")
        return fallback_resolution(principal, f"user read failed: {e}")

    try:
        if user is None:
            user = _default_user(principal)
            await db.users.insert_one(dict(user))
            logger.info(f"Created default user document for {principal.email}")

        updates = migrate_user_record(user)
        if updates:
            user = {**user, **updates}
            await db.users.update_one({"uid": principal.uid}, {"$set": updates})
            logger.info(f"User {principal.uid} migrated with updates: {updates}")
            await log_activity(db, user, "migrate", "user", principal.uid, updates)
    except TRANSIENT_IO_ERRORS as e:
        logger.warning(f"Failed to persist user {principal.uid}: {e}")
        return Resolution(
            identity=build_identity(user, principal),
            state=ResolutionState.DEGRADED,
            reason=f"user write failed: {e}"
        )

    identity = build_identity(user, principal)
    logger.info(
        f"User auth setup complete: role={identity.role}, userType={identity.userType}, "
        f"teamId={identity.teamId}, personalTeamId={identity.personalTeamId}"
    )
    return Resolution(identity=identity)


# ==================== ROSTER ====================

async def get_downlines(db, upline_personal_team_id: str) -> List[Dict]:
    """Downlines rattachés à un upline (lien: uplineTeamId == personalTeamId de l'upline)"""
    db = require_db(db)
    return await db.users.find(
        {"userType": UserType.DOWNLINE.value, "uplineTeamId": upline_personal_team_id},
        {"_id": 0}
    ).sort("createdAt", 1).to_list(1000)
