"""
Spotify integration layer for Recap.

Scope:
- Authorization Code flow: build the authorize URL, exchange the code,
  refresh user access tokens.
- User-level Web API calls made with the caller's access token:
  profile, top tracks, playlist creation.

The client holds no per-user state; tokens are passed in by the caller and
persisted elsewhere (see recap.store).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlencode

import httpx

from .config import SpotifyConfig

logger = logging.getLogger(__name__)


SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"

SCOPES = (
    "user-read-email",
    "user-read-private",
    "user-top-read",
    "user-read-recently-played",
    "playlist-modify-public",
    "playlist-modify-private",
)


class SpotifyError(Exception):
    """Base exception for Spotify-related issues."""


class SpotifyAuthError(SpotifyError):
    """Token endpoint failures: bad code, revoked refresh token, bad credentials."""


class SpotifyAPIError(SpotifyError):
    """Non-auth API errors (network, rate limit, bad responses)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class TokenGrant:
    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class SpotifyClient:
    """
    Thin Spotify Web API client for user-delegated calls.
    """

    def __init__(self, cfg: SpotifyConfig, *, timeout: float = 10.0) -> None:
        self._cfg = cfg
        self._http = httpx.Client(timeout=timeout)

    # --------------------------------------------------------------------- #
    # Authorization
    # --------------------------------------------------------------------- #
    def authorize_url(self, state: str) -> str:
        params = {
            "client_id": self._cfg.client_id,
            "response_type": "code",
            "redirect_uri": self._cfg.callback_url,
            "scope": " ".join(SCOPES),
            "state": state,
            "show_dialog": "true",
        }
        return f"{SPOTIFY_AUTHORIZE_URL}?{urlencode(params)}"

    def _token_request(self, data: dict) -> TokenGrant:
        try:
            resp = self._http.post(
                SPOTIFY_TOKEN_URL,
                data=data,
                auth=(self._cfg.client_id, self._cfg.client_secret),
            )
        except httpx.HTTPError as exc:
            logger.error(f"Failed to contact Spotify token endpoint: {exc}")
            raise SpotifyAuthError(f"Failed to contact Spotify token endpoint: {exc}") from exc

        if resp.status_code != 200:
            logger.error(f"Spotify token request ({data.get('grant_type')}) failed: {resp.status_code} {resp.text}")
            raise SpotifyAuthError(f"Spotify token request failed: {resp.status_code}")

        payload = resp.json()
        access_token = payload.get("access_token")
        if not access_token:
            logger.error("Spotify token response missing access_token")
            raise SpotifyAuthError("Spotify token response missing access_token.")

        return TokenGrant(
            access_token=access_token,
            expires_in=int(payload.get("expires_in", 3600)),
            refresh_token=payload.get("refresh_token"),
            scope=payload.get("scope"),
        )

    def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for an access/refresh token pair."""
        logger.info("Exchanging authorization code for tokens")
        grant = self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._cfg.callback_url,
            }
        )
        if not grant.refresh_token:
            logger.error("Spotify token response missing refresh_token")
            raise SpotifyAuthError("Spotify token response missing refresh_token.")
        return grant

    def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """
        Obtain a new access token. Spotify may rotate the refresh token; when it
        does not, TokenGrant.refresh_token is None and the old one stays valid.
        """
        logger.info("Refreshing Spotify access token")
        return self._token_request({"grant_type": "refresh_token", "refresh_token": refresh_token})

    # --------------------------------------------------------------------- #
    # Low-level request helper
    # --------------------------------------------------------------------- #
    def _request(self, method: str, path: str, access_token: str, **kwargs) -> dict:
        url = f"{SPOTIFY_API_BASE_URL}{path}"
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {access_token}"

        logger.debug(f"Spotify API request: {method} {path}")
        try:
            resp = self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.error(f"HTTP error calling Spotify API {path}: {exc}")
            raise SpotifyAPIError(f"Error calling Spotify API: {exc}") from exc

        if not resp.is_success:
            logger.error(f"Spotify API error {resp.status_code} on {path}: {resp.text}")
            raise SpotifyAPIError(
                f"Spotify API error {resp.status_code} on {path}",
                status_code=resp.status_code,
            )

        return resp.json()

    # --------------------------------------------------------------------- #
    # User-level methods
    # --------------------------------------------------------------------- #
    def get_current_user(self, access_token: str) -> dict:
        return self._request("GET", "/me", access_token)

    def get_top_tracks(
        self,
        access_token: str,
        *,
        limit: int = 10,
        time_range: str = "medium_term",
    ) -> dict:
        params = {"limit": max(1, min(limit, 50)), "time_range": time_range}
        data = self._request("GET", "/me/top/tracks", access_token, params=params)
        logger.debug(f"Spotify top tracks returned {len(data.get('items', []))} items")
        return data

    def create_playlist(
        self,
        access_token: str,
        spotify_id: str,
        *,
        name: str,
        description: str,
        public: bool = False,
    ) -> dict:
        payload = {"name": name, "description": description, "public": public}
        data = self._request("POST", f"/users/{spotify_id}/playlists", access_token, json=payload)
        logger.info(f"Playlist created: {data.get('id')}")
        return data

    def add_tracks(self, access_token: str, playlist_id: str, uris: List[str]) -> Optional[str]:
        """
        Add tracks to a playlist, 100 URIs per request (Spotify's cap).

        Returns the last snapshot id.
        """
        snapshot_id: Optional[str] = None
        for i in range(0, len(uris), 100):
            chunk = uris[i : i + 100]
            data = self._request("POST", f"/playlists/{playlist_id}/tracks", access_token, json={"uris": chunk})
            snapshot_id = data.get("snapshot_id")
        logger.info(f"Added {len(uris)} tracks to playlist {playlist_id}")
        return snapshot_id

    def close(self) -> None:
        logger.debug("Closing SpotifyClient HTTP connection")
        self._http.close()


__all__ = [
    "SpotifyClient",
    "SpotifyError",
    "SpotifyAuthError",
    "SpotifyAPIError",
    "TokenGrant",
]
