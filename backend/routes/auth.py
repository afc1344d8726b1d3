"""
Phoenix Tracker - Routes Auth
Signup / Login / Logout / Session / Vérification code équipe.
"""

from datetime import datetime, timezone, timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import SESSION_TTL_DAYS, generate_token, get_db, hash_password, now_iso, require_db
from models.auth import Principal, SignupRequest, UserLogin
from services.activity_logger import log_activity
from services.errors import UnavailableError, ValidationError
from services.session_cache import SessionContext
from services.team_resolver import register_user, verify_upline_team_id

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

def _require_db_http(db):
    try:
        return require_db(db)
    except UnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))


def _context_payload(context: SessionContext) -> dict:
    return {
        "uid": context.uid,
        "email": context.principal.email if context.principal else None,
        "displayName": context.principal.displayName if context.principal else None,
        "role": context.role,
        "userType": context.user_type,
        "teamId": context.team_id,
        "personalTeamId": context.personal_team_id,
        "state": context.state.value,
        "loading": context.loading,
    }


async def get_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db=Depends(get_db)
) -> SessionContext:
    """Contexte de session depuis le token (réhydraté ou résolu à la demande)"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Non authentifié")
    return await load_session(request.app, db, credentials.credentials)


async def load_session(app, db, token: str) -> SessionContext:
    """Session valide en base → contexte du registre (app.state.sessions)"""
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")

    db = _require_db_http(db)
    session = await db.sessions.find_one({
        "token": token,
        "expiresAt": {"$gt": now_iso()}
    }, {"_id": 0})

    registry = app.state.sessions
    if not session:
        # Session expirée ou inconnue: contexte et snapshot purgés
        registry.close(token)
        raise HTTPException(status_code=401, detail="Session expirée")

    context = registry.get(token)

    if context is None:
        principal = Principal(
            uid=session["uid"],
            email=session.get("email", ""),
            displayName=session.get("displayName")
        )
        context = await registry.authenticate(token, db, principal)
    elif context.loading:
        await context.wait_loaded()

    return context


async def get_team_context(context: SessionContext = Depends(get_session)) -> SessionContext:
    """Contexte avec équipe résolue (sinon 503: profil encore indisponible)"""
    if not context.team_id:
        raise HTTPException(status_code=503, detail="Profil utilisateur non résolu")
    return context


def require_admin(context: SessionContext = Depends(get_team_context)) -> SessionContext:
    if context.role != "admin":
        raise HTTPException(status_code=403, detail="Accès admin requis")
    return context


# ==================== SIGNUP / LOGIN / LOGOUT ====================

@router.post("/signup")
async def signup(data: SignupRequest, db=Depends(get_db)):
    """Inscription upline (nouveau code équipe) ou downline (code de l'upline)"""
    db = _require_db_http(db)
    try:
        identity = await register_user(
            db,
            email=data.email,
            password=data.password,
            name=data.name,
            user_type=data.user_type,
            upline_team_id=data.upline_team_id,
            confirm_password=data.confirm_password
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "user": identity.model_dump()}


@router.post("/login")
async def login(data: UserLogin, request: Request, db=Depends(get_db)):
    """Connexion: vérifie le credential, ouvre la session, résout l'équipe"""
    db = _require_db_http(db)
    credential = await db.credentials.find_one(
        {"email": data.email.lower().strip()},
        {"_id": 0}
    )

    if not credential or credential.get("password") != hash_password(data.password):
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")

    token = generate_token()
    expires_at = (datetime.now(timezone.utc) + timedelta(days=SESSION_TTL_DAYS)).isoformat()

    await db.sessions.insert_one({
        "token": token,
        "uid": credential["uid"],
        "email": credential["email"],
        "displayName": credential.get("displayName"),
        "createdAt": now_iso(),
        "expiresAt": expires_at
    })

    principal = Principal(
        uid=credential["uid"],
        email=credential["email"],
        displayName=credential.get("displayName")
    )
    context = await request.app.state.sessions.authenticate(token, db, principal)

    await log_activity(
        db,
        {"uid": principal.uid, "email": principal.email, "teamId": context.team_id},
        "login",
        "user",
        principal.uid,
        {"state": context.state.value}
    )

    return {"token": token, "user": _context_payload(context)}


@router.post("/logout")
async def logout(
    request: Request,
    context: SessionContext = Depends(get_session),
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db=Depends(get_db)
):
    db = _require_db_http(db)
    user = {"uid": context.uid, "email": context.principal.email if context.principal else None}
    await db.sessions.delete_one({"token": credentials.credentials})
    request.app.state.sessions.close(credentials.credentials)
    await log_activity(db, user, "logout", "user", user["uid"])
    return {"success": True}


@router.get("/me")
async def get_me(context: SessionContext = Depends(get_session)):
    """Identité résolue + état de la résolution"""
    return _context_payload(context)


@router.get("/verify-team/{team_id}")
async def verify_team(team_id: str, db=Depends(get_db)):
    """Code équipe valide pour une inscription downline"""
    db = _require_db_http(db)
    return {"teamId": team_id, "valid": await verify_upline_team_id(db, team_id.strip().upper())}
