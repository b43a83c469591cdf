"""
MongoDB persistence for Recap.

Collections:
- users               one document per Spotify account (tokens + cached profile)
- summaries           one cached AI summary per user
- blacklisted_tokens  revoked session-token ids, expired by a TTL index
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from .config import MongoConfig
from .spotify import TokenGrant

logger = logging.getLogger(__name__)


# Revoked ids only need to outlive the session token itself.
REVOCATION_RETENTION = timedelta(hours=24)

# Granularity of last_active_at updates from authenticated requests.
ACTIVITY_RESOLUTION = timedelta(hours=1)


@dataclass
class User:
    id: str
    spotify_id: str
    access_token: Optional[str]
    refresh_token: str
    token_expiration: Optional[datetime]
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    country: Optional[str] = None
    product: Optional[str] = None
    created_at: Optional[datetime] = None
    last_active_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "User":
        return cls(
            id=str(doc["_id"]),
            spotify_id=doc["spotify_id"],
            access_token=doc.get("access_token"),
            refresh_token=doc["refresh_token"],
            token_expiration=doc.get("token_expiration"),
            display_name=doc.get("display_name"),
            email=doc.get("email"),
            avatar_url=doc.get("avatar_url"),
            country=doc.get("country"),
            product=doc.get("product"),
            created_at=doc.get("created_at"),
            last_active_at=doc.get("last_active_at"),
        )


@dataclass
class Summary:
    user_id: str
    text: str
    created_at: Optional[datetime] = None


def _profile_fields(profile: Dict[str, Any]) -> Dict[str, Any]:
    images = profile.get("images") or []
    avatar_url = None
    if isinstance(images, list) and images and isinstance(images[0], dict):
        avatar_url = images[0].get("url")
    return {
        "display_name": profile.get("display_name"),
        "email": profile.get("email"),
        "avatar_url": avatar_url,
        "country": profile.get("country"),
        "product": profile.get("product"),
    }


def _object_id(user_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(user_id)
    except (InvalidId, TypeError):
        return None


class Store:
    def __init__(self, db: Database) -> None:
        self._db = db
        self.users = db["users"]
        self.summaries = db["summaries"]
        self.blacklisted_tokens = db["blacklisted_tokens"]

    @classmethod
    def from_config(cls, cfg: MongoConfig) -> "Store":
        # MongoClient connects lazily; nothing touches the network until first use.
        client = MongoClient(cfg.uri, tz_aware=True, serverSelectionTimeoutMS=5000)
        return cls(client[cfg.database])

    def ensure_indexes(self) -> None:
        self.users.create_index([("spotify_id", ASCENDING)], unique=True)
        self.users.create_index([("last_active_at", ASCENDING)])
        self.summaries.create_index([("user_id", ASCENDING)], unique=True)
        self.blacklisted_tokens.create_index([("jti", ASCENDING)], unique=True)
        self.blacklisted_tokens.create_index(
            [("created_at", ASCENDING)],
            expireAfterSeconds=int(REVOCATION_RETENTION.total_seconds()),
        )
        logger.info("MongoDB indexes ensured")

    def close(self) -> None:
        self._db.client.close()

    # ------------------------------------------------------------------ #
    # Users
    # ------------------------------------------------------------------ #
    def upsert_user_login(
        self,
        spotify_id: str,
        grant: TokenGrant,
        profile: Dict[str, Any],
        now: datetime,
    ) -> User:
        """Create the user on first login, otherwise replace tokens and profile."""
        update = {
            "$set": {
                "access_token": grant.access_token,
                "refresh_token": grant.refresh_token,
                "token_expiration": now + timedelta(seconds=grant.expires_in),
                "last_active_at": now,
                **_profile_fields(profile),
            },
            "$setOnInsert": {"created_at": now},
        }
        doc = self.users.find_one_and_update(
            {"spotify_id": spotify_id},
            update,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        user = User.from_doc(doc)
        logger.info(f"Stored login for Spotify user {spotify_id} (user_id={user.id})")
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        oid = _object_id(user_id)
        if oid is None:
            return None
        doc = self.users.find_one({"_id": oid})
        return User.from_doc(doc) if doc else None

    def save_refreshed_token(self, user_id: str, grant: TokenGrant, now: datetime) -> None:
        fields: Dict[str, Any] = {
            "access_token": grant.access_token,
            "token_expiration": now + timedelta(seconds=grant.expires_in),
            "last_active_at": now,
        }
        if grant.refresh_token:
            fields["refresh_token"] = grant.refresh_token
        self.users.update_one({"_id": _object_id(user_id)}, {"$set": fields})

    def clear_access_token(self, user_id: str, expected_token: Optional[str]) -> None:
        """Clear the access token, but only if it is still `expected_token`."""
        # A concurrent request may already have stored a newer token.
        self.users.update_one(
            {"_id": _object_id(user_id), "access_token": expected_token},
            {"$set": {"access_token": None, "token_expiration": None}},
        )
        logger.warning(f"Clearing stored Spotify access token for user_id={user_id}")

    def touch_user(self, user_id: str, now: datetime) -> None:
        """Mark the user as active; writes at most once per ACTIVITY_RESOLUTION."""
        self.users.update_one(
            {"_id": _object_id(user_id), "last_active_at": {"$lt": now - ACTIVITY_RESOLUTION}},
            {"$set": {"last_active_at": now}},
        )

    def delete_inactive_users(self, threshold: datetime) -> int:
        stale = [doc["_id"] for doc in self.users.find({"last_active_at": {"$lt": threshold}}, {"_id": 1})]
        if not stale:
            return 0
        result = self.users.delete_many({"_id": {"$in": stale}})
        self.summaries.delete_many({"user_id": {"$in": [str(oid) for oid in stale]}})
        return result.deleted_count

    # ------------------------------------------------------------------ #
    # Summaries
    # ------------------------------------------------------------------ #
    def get_summary(self, user_id: str) -> Optional[Summary]:
        doc = self.summaries.find_one({"user_id": user_id})
        if not doc:
            return None
        return Summary(user_id=user_id, text=doc["summary"], created_at=doc.get("created_at"))

    def save_summary(self, user_id: str, text: str, now: datetime) -> Summary:
        """Store a summary unless one already exists; returns whichever is stored."""
        doc = self.summaries.find_one_and_update(
            {"user_id": user_id},
            {"$setOnInsert": {"summary": text, "created_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return Summary(user_id=user_id, text=doc["summary"], created_at=doc.get("created_at"))

    # ------------------------------------------------------------------ #
    # Revocation list
    # ------------------------------------------------------------------ #
    def revoke_token(self, jti: str, now: datetime) -> None:
        self.blacklisted_tokens.update_one(
            {"jti": jti},
            {"$setOnInsert": {"created_at": now}},
            upsert=True,
        )

    def is_token_revoked(self, jti: str, now: datetime) -> bool:
        # The TTL monitor deletes lazily, so filter on age as well.
        doc = self.blacklisted_tokens.find_one({"jti": jti, "created_at": {"$gt": now - REVOCATION_RETENTION}})
        return doc is not None


__all__ = ["ACTIVITY_RESOLUTION", "REVOCATION_RETENTION", "Store", "Summary", "User"]
