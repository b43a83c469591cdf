"""
Keeps each user's Spotify access token usable.

Spotify tokens live per user (not per session). Before a Spotify call the
stored token is refreshed if it expires within REFRESH_MARGIN. A failed
refresh clears the stored access token (unless another request has already
replaced it) but keeps the user document, so the user can log in again
without losing their cached summary.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from .spotify import SpotifyClient, SpotifyError
from .store import Store, User

logger = logging.getLogger(__name__)

REFRESH_MARGIN = timedelta(minutes=5)


class UpstreamAuthError(Exception):
    """The user's Spotify authorization is unusable; they must log in again."""


def needs_refresh(user: User, now: datetime) -> bool:
    return user.token_expiration is None or user.token_expiration < now + REFRESH_MARGIN


def ensure_fresh_access_token(user: User, store: Store, spotify: SpotifyClient, now: datetime) -> str:
    if not user.access_token:
        logger.warning(f"No stored Spotify access token for user_id={user.id}")
        raise UpstreamAuthError("Spotify authorization has been cleared. Log in again.")

    if not needs_refresh(user, now):
        return user.access_token

    logger.info(f"Spotify token for user_id={user.id} expires soon, refreshing")
    try:
        grant = spotify.refresh_access_token(user.refresh_token)
    except SpotifyError as exc:
        logger.error(f"Token refresh failed for user_id={user.id}: {exc}")
        store.clear_access_token(user.id, user.access_token)
        raise UpstreamAuthError("Failed to refresh Spotify token.") from exc

    store.save_refreshed_token(user.id, grant, now)
    logger.info(f"Spotify token refreshed for user_id={user.id}")
    return grant.access_token


__all__ = ["REFRESH_MARGIN", "UpstreamAuthError", "ensure_fresh_access_token", "needs_refresh"]
