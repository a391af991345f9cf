# main.py
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import init_db
from .log import configure_logging, get_logger
from .models import LoginRequest, LoginResponse, LogoutRequest, SessionMeResponse, UserPublic
from .persistent_login import PersistentLoginConfig, PersistentLoginManager
from .sessions import create_session, get_live_session, get_session, revoke_session, touch_session
from .settings import Settings, settings as default_settings
from .store import SqliteTokenStore, TokenStore
from .tokens import MalformedCookie, decode_cookie_value, encode_cookie_value
from .users_client import create_user_dev, get_user_by_id, get_user_by_username, verify_user_password

logger = get_logger(__name__)

def _cookie_params(s: Settings) -> Dict[str, Any]:
    samesite = s.COOKIE_SAMESITE.lower()
    if samesite not in ("lax", "strict", "none"):
        samesite = "lax"
    return {
        "httponly": True,
        "secure": s.cookie_secure,
        "samesite": samesite,  # "none" requires secure=true on modern browsers
    }

def _row_to_user_public(row: Dict[str, Any]) -> UserPublic:
    return UserPublic(
        id=row["id"],
        username=row["username"],
        email=row.get("email"),
        given_name=row.get("given_name"),
        family_name=row.get("family_name"),
    )

def _series_from_cookie(value: Optional[str]) -> Optional[str]:
    try:
        return decode_cookie_value(value).series
    except MalformedCookie:
        return None

def create_app(s: Settings | None = None, store: TokenStore | None = None) -> FastAPI:
    s = s or default_settings
    logins = PersistentLoginManager(
        store if store is not None else SqliteTokenStore(s.DB_PATH),
        PersistentLoginConfig.from_settings(s),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        configure_logging(s.LOG_LEVEL, json=not s.DEV_MODE)
        init_db(s.DB_PATH, dev_local_users=s.DEV_LOCAL_USERS)
        purged = logins.purge_expired()
        if purged:
            logger.info("purged expired remembered logins", count=purged)
        yield

    app = FastAPI(title=s.APP_NAME, lifespan=lifespan)
    app.state.settings = s
    app.state.logins = logins

    # (Optional) CORS if you'll hit this from a JS SPA during dev
    if s.DEV_MODE:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    def set_session_cookie(response: Response, sid: str) -> None:
        response.set_cookie(
            key=s.SESSION_COOKIE_NAME,
            value=sid,
            **_cookie_params(s),
            path="/",
            max_age=s.SESSION_ABSOLUTE_SECONDS,
        )

    def set_remember_cookie(response: Response, series: str, token: str) -> None:
        response.set_cookie(
            key=s.REMEMBER_COOKIE_NAME,
            value=encode_cookie_value(series, token),
            **_cookie_params(s),
            path=s.REMEMBER_COOKIE_PATH,
            max_age=logins.cookie_max_age(),
        )

    def discard_remember_cookie(response: Response) -> None:
        response.delete_cookie(s.REMEMBER_COOKIE_NAME, path=s.REMEMBER_COOKIE_PATH)

    def unauthorized(detail: str, discard_remember: bool = False) -> JSONResponse:
        # HTTPException would drop the Set-Cookie headers
        resp = JSONResponse(status_code=401, content={"detail": detail})
        if discard_remember:
            discard_remember_cookie(resp)
        return resp

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    # -------- DEV ONLY: create user quickly to test --------
    @app.post("/dev/create-user")
    def dev_create_user(payload: Dict[str, Any]):
        if not s.DEV_MODE or not s.DEV_LOCAL_USERS:
            raise HTTPException(status_code=403, detail="dev endpoint disabled")
        required = {"username", "password"}
        if not required.issubset(payload):
            raise HTTPException(status_code=400, detail="username/password required")
        if get_user_by_username(s.DB_PATH, payload["username"]):
            raise HTTPException(status_code=409, detail="username_taken")
        user = create_user_dev(
            s.DB_PATH,
            username=payload["username"],
            password=payload["password"],
            email=payload.get("email"),
            given_name=payload.get("given_name"),
            family_name=payload.get("family_name"),
            rounds=s.BCRYPT_ROUNDS,
        )
        return {"user": _row_to_user_public(user).model_dump()}

    # --------------------- AuthN core ----------------------

    @app.post("/login", response_model=LoginResponse)
    def login(payload: LoginRequest, request: Request, response: Response):
        user = get_user_by_username(s.DB_PATH, payload.username)
        if not user or not verify_user_password(user, payload.password):
            raise HTTPException(status_code=401, detail="invalid_credentials")

        # remember_me=false is this attempt's "do not remember" flag
        existing = _series_from_cookie(request.cookies.get(s.REMEMBER_COOKIE_NAME))
        remembered = logins.remember(
            str(user["id"]),
            existing,
            do_not_remember=not payload.remember_me,
        )
        series = None
        if remembered.record is not None:
            series = remembered.record.series
            set_remember_cookie(response, series, remembered.record.token)
        elif remembered.discard_cookie:
            discard_remember_cookie(response)

        sess = create_session(
            s.DB_PATH,
            user_id=user["id"],
            ttl_seconds=s.SESSION_TTL_SECONDS,
            absolute_seconds=s.SESSION_ABSOLUTE_SECONDS,
            remember_series=series,
        )
        set_session_cookie(response, sess.session_id)

        return LoginResponse(
            user=_row_to_user_public(user),
            csrf_token=sess.csrf_token,
            remembered=series is not None,
        )

    @app.get("/session/me", response_model=SessionMeResponse)
    def session_me(request: Request, response: Response):
        sid = request.cookies.get(s.SESSION_COOKIE_NAME)
        sess = get_live_session(s.DB_PATH, sid)
        if sess is not None:
            user = get_user_by_id(s.DB_PATH, sess["user_id"])
            if user is None:
                # if user deleted, invalidate session
                revoke_session(s.DB_PATH, sid)
                return unauthorized("user_not_found")
            # Refresh idle TTL (sliding window) without exceeding absolute expiry
            touch_session(s.DB_PATH, sid, s.SESSION_TTL_SECONDS)
            sess = get_session(s.DB_PATH, sid)
            return SessionMeResponse(
                session_id=sid,
                user=_row_to_user_public(user),
                expires_at=sess["expires_at"],
                absolute_expires_at=sess["absolute_expires_at"],
            )

        remember_value = request.cookies.get(s.REMEMBER_COOKIE_NAME)
        if remember_value is None:
            return unauthorized("no_session")

        result = logins.authenticate(remember_value)
        if not result.accepted:
            return unauthorized(result.reason, discard_remember=True)

        owner = result.owner
        user = get_user_by_id(s.DB_PATH, int(owner)) if owner and owner.isdigit() else None
        if user is None:
            logins.forget(result.record.series)
            return unauthorized("user_not_found", discard_remember=True)

        new = create_session(
            s.DB_PATH,
            user_id=user["id"],
            ttl_seconds=s.SESSION_TTL_SECONDS,
            absolute_seconds=s.SESSION_ABSOLUTE_SECONDS,
            remember_series=result.record.series,
        )
        set_session_cookie(response, new.session_id)
        set_remember_cookie(response, result.record.series, result.record.token)
        return SessionMeResponse(
            session_id=new.session_id,
            user=_row_to_user_public(user),
            expires_at=new.expires_at,
            absolute_expires_at=new.absolute_expires_at,
            via_remember_me=True,
            csrf_token=new.csrf_token,
        )

    @app.post("/logout")
    def logout(payload: LogoutRequest, request: Request, response: Response):
        sid = request.cookies.get(s.SESSION_COOKIE_NAME)
        if not sid:
            raise HTTPException(status_code=401, detail="no_session")

        # CSRF: require header matching session's csrf token
        csrf_hdr = request.headers.get("X-CSRF")
        sess = get_session(s.DB_PATH, sid)
        if not sess or sess["revoked"] == 1:
            raise HTTPException(status_code=401, detail="invalid_session")
        if not csrf_hdr or csrf_hdr != sess["csrf_token"]:
            raise HTTPException(status_code=403, detail="csrf_invalid")

        revoke_session(s.DB_PATH, sid, all_for_user=payload.all_devices)
        if payload.all_devices:
            logins.forget_owner(str(sess["user_id"]))
        else:
            owner = str(sess["user_id"])
            logins.forget_owned(sess["remember_series"], owner)
            # a cookie naming someone else's series must not revoke it
            logins.forget_owned(_series_from_cookie(request.cookies.get(s.REMEMBER_COOKIE_NAME)), owner)

        response.delete_cookie(s.SESSION_COOKIE_NAME, path="/")
        discard_remember_cookie(response)
        return {"ok": True}

    return app

app = create_app()
