"""
FastAPI backend for Recap.

Endpoints:

- GET  /auth/spotify            redirect to Spotify's consent page
- GET  /auth/spotify/callback   finish OAuth, redirect to the frontend with #token=<jwt>
- POST /api/listening-data      the user's top tracks
- POST /api/generate-summary    AI summary of listening data (cached per user)
- POST /api/generate-playlist   create a playlist from track URIs
- GET  /api/me                  cached profile of the logged-in user
- POST /api/logout              revoke the presented session token

All /api routes expect `Authorization: Bearer <session token>`.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from pymongo.errors import PyMongoError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .config import ConfigError, load_config
from .sessions import (
    SessionClaims,
    SessionExpiredError,
    SessionRevokedError,
    SessionTokenError,
    authenticate,
    issue_oauth_state,
    issue_session_token,
    revoke,
    verify_oauth_state,
)
from .spotify import SpotifyAPIError, SpotifyClient, SpotifyError
from .store import Store, User
from .summary import Summarizer, SummaryError, get_or_create_summary
from .sweep import run_daily_sweep
from .upstream import UpstreamAuthError, ensure_fresh_access_token

logger = logging.getLogger(__name__)

try:
    _cfg = load_config()
except ConfigError as exc:
    logger.critical(str(exc))
    raise SystemExit(1) from exc

_spotify = SpotifyClient(_cfg.spotify)
_store = Store.from_config(_cfg.mongo)
_summarizer = Summarizer(_cfg.ai)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await asyncio.to_thread(_store.ensure_indexes)
    sweep_task = asyncio.create_task(run_daily_sweep(_store))
    logger.info("Recap API started")
    yield
    sweep_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweep_task
    _spotify.close()
    _store.close()
    logger.info("Recap API stopped")


limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="Recap API",
    description="Spotify listening summaries and playlists.",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_cfg.allowed_origin],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)

SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


class ListeningDataRequest(BaseModel):
    limit: int = 10
    time_range: str = "medium_term"


class SummaryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    listening_data: Optional[Any] = Field(None, alias="listeningData")


class SummaryResponse(BaseModel):
    summary: str
    cached: bool


class PlaylistRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    track_uris: List[str] = Field(default_factory=list, alias="trackUris")
    name: Optional[str] = None
    description: Optional[str] = None
    public: bool = False


class PlaylistResponse(BaseModel):
    playlist_id: str
    url: Optional[str] = None


class ProfileOut(BaseModel):
    id: str
    spotify_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _frontend_redirect(fragment: str) -> RedirectResponse:
    return RedirectResponse(f"{_cfg.frontend_url}/#{fragment}", status_code=302)


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token.")
    return token.strip()


def _get_session(request: Request) -> SessionClaims:
    token = _bearer_token(request)
    try:
        return authenticate(token, _cfg.auth.session_secret, _store, _now())
    except SessionExpiredError as exc:
        raise HTTPException(status_code=401, detail="Session expired. Log in again.") from exc
    except SessionRevokedError as exc:
        raise HTTPException(status_code=401, detail="Session has been logged out.") from exc
    except SessionTokenError as exc:
        logger.warning(f"Rejected session token: {exc}")
        raise HTTPException(status_code=401, detail="Invalid session token.") from exc
    except PyMongoError as exc:
        logger.error(f"Database error while checking revocation list: {exc}")
        raise HTTPException(status_code=503, detail="Database unavailable.") from exc


def _get_session_user(request: Request) -> Tuple[SessionClaims, User]:
    claims = _get_session(request)
    try:
        user = _store.get_user(claims.user_id)
        if user is not None:
            _store.touch_user(user.id, _now())
    except PyMongoError as exc:
        logger.error(f"Database error loading user {claims.user_id}: {exc}")
        raise HTTPException(status_code=503, detail="Database unavailable.") from exc
    if user is None:
        logger.warning(f"Session for unknown user_id={claims.user_id}")
        raise HTTPException(status_code=401, detail="User not found.")
    return claims, user


def _get_spotify_token(user: User) -> str:
    try:
        return ensure_fresh_access_token(user, _store, _spotify, _now())
    except UpstreamAuthError as exc:
        raise HTTPException(status_code=401, detail="Spotify authorization expired. Log in again.") from exc
    except PyMongoError as exc:
        logger.error(f"Database error refreshing token for {user.id}: {exc}")
        raise HTTPException(status_code=503, detail="Database unavailable.") from exc


def _spotify_failure(exc: SpotifyError, detail: str) -> HTTPException:
    if isinstance(exc, SpotifyAPIError) and exc.status_code == 401:
        return HTTPException(status_code=401, detail="Spotify authorization expired. Log in again.")
    return HTTPException(status_code=502, detail=detail)


@app.get("/health", tags=["system"])
def health() -> dict:
    return {"status": "ok"}


@app.get("/auth/spotify", tags=["auth"])
def auth_spotify() -> RedirectResponse:
    """
    Redirect the browser to Spotify's authorize page.

    The OAuth `state` is a signed, short-lived token, so nothing is stored.
    """
    state = issue_oauth_state(_cfg.auth.session_secret, _now())
    logger.info("OAuth login initiated")
    return RedirectResponse(_spotify.authorize_url(state), status_code=302)


@app.get("/auth/spotify/callback", tags=["auth"])
def auth_spotify_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
) -> RedirectResponse:
    if error:
        logger.warning(f"OAuth callback: user denied access - {error}")
        return _frontend_redirect(f"error={quote(error)}")

    if not state or not verify_oauth_state(state, _cfg.auth.session_secret):
        logger.error("OAuth callback: invalid or expired state")
        return _frontend_redirect("error=invalid_state")

    if not code:
        logger.warning("OAuth callback: no authorization code received")
        return _frontend_redirect("error=missing_code")

    try:
        grant = _spotify.exchange_code(code)
        profile = _spotify.get_current_user(grant.access_token)
    except SpotifyError as exc:
        logger.error(f"OAuth callback failed talking to Spotify: {exc}")
        raise HTTPException(status_code=502, detail="Spotify login failed.") from exc

    spotify_id = profile.get("id")
    if not spotify_id:
        logger.error("Spotify /me response missing user id")
        raise HTTPException(status_code=502, detail="Spotify login failed.")

    now = _now()
    try:
        user = _store.upsert_user_login(spotify_id, grant, profile, now)
    except PyMongoError as exc:
        logger.error(f"Failed to store user {spotify_id}: {exc}")
        raise HTTPException(status_code=503, detail="Database unavailable.") from exc

    issued = issue_session_token(user.id, _cfg.auth.session_secret, now)
    return _frontend_redirect(f"token={issued.token}")


@app.post("/api/listening-data", tags=["spotify"])
@limiter.limit("30/minute")
def listening_data(request: Request, body: Optional[ListeningDataRequest] = None) -> dict:
    body = body or ListeningDataRequest()
    _, user = _get_session_user(request)
    token = _get_spotify_token(user)
    try:
        return _spotify.get_top_tracks(token, limit=body.limit, time_range=body.time_range)
    except SpotifyError as exc:
        raise _spotify_failure(exc, "Failed to fetch listening data.") from exc


@app.post("/api/generate-summary", response_model=SummaryResponse, tags=["summary"])
@limiter.limit("10/minute")
def generate_summary(request: Request, body: SummaryRequest) -> SummaryResponse:
    _, user = _get_session_user(request)
    try:
        result = get_or_create_summary(user.id, body.listening_data, _store, _summarizer, _now())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="No listening data provided.") from exc
    except SummaryError as exc:
        raise HTTPException(status_code=502, detail="Failed to generate summary.") from exc
    except PyMongoError as exc:
        logger.error(f"Database error in summary endpoint: {exc}")
        raise HTTPException(status_code=503, detail="Database unavailable.") from exc
    return SummaryResponse(summary=result.summary, cached=result.cached)


@app.post("/api/generate-playlist", response_model=PlaylistResponse, tags=["spotify"])
@limiter.limit("5/minute")
def generate_playlist(request: Request, body: PlaylistRequest) -> PlaylistResponse:
    _, user = _get_session_user(request)
    if not body.track_uris:
        raise HTTPException(status_code=400, detail="No track URIs provided.")

    token = _get_spotify_token(user)
    name = body.name or "My Recap"
    description = body.description or "Your top tracks, collected by Recap."
    try:
        playlist = _spotify.create_playlist(
            token,
            user.spotify_id,
            name=name,
            description=description,
            public=body.public,
        )
        _spotify.add_tracks(token, playlist["id"], body.track_uris)
    except SpotifyError as exc:
        raise _spotify_failure(exc, "Failed to create playlist.") from exc

    return PlaylistResponse(
        playlist_id=playlist["id"],
        url=(playlist.get("external_urls") or {}).get("spotify"),
    )


@app.get("/api/me", response_model=ProfileOut, tags=["auth"])
def me(request: Request) -> ProfileOut:
    _, user = _get_session_user(request)
    return ProfileOut(
        id=user.id,
        spotify_id=user.spotify_id,
        display_name=user.display_name,
        email=user.email,
        avatar_url=user.avatar_url,
    )


@app.post("/api/logout", tags=["auth"])
def logout(request: Request) -> dict:
    claims = _get_session(request)
    try:
        revoke(claims, _store, _now())
    except PyMongoError as exc:
        logger.error(f"Failed to revoke session token: {exc}")
        raise HTTPException(status_code=503, detail="Database unavailable.") from exc
    return {"status": "logged_out"}
