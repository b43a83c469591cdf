"""
Shared fixtures: test configuration, an in-memory MongoDB stand-in and a
scripted Spotify HTTP client.
"""

from __future__ import annotations

import copy
import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo import ReturnDocument

# recap.api loads its configuration at import time.
os.environ.setdefault("SPOTIFY_CLIENT_ID", "test-client-id")
os.environ.setdefault("SPOTIFY_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("SPOTIFY_CALLBACK_URL", "http://localhost:8888/auth/spotify/callback")
os.environ.setdefault("GROQ_API_KEY", "test-groq-key")
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-with-enough-bytes")
os.environ.setdefault("ALLOWED_ORIGIN", "http://localhost:5173")

from recap.store import Store  # noqa: E402
from recap.spotify import TokenGrant  # noqa: E402


NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _matches(doc: Dict[str, Any], flt: Dict[str, Any]) -> bool:
    for key, cond in flt.items():
        value = doc.get(key)
        if isinstance(cond, dict):
            for op, operand in cond.items():
                if op == "$lt" and not (value is not None and value < operand):
                    return False
                if op == "$gt" and not (value is not None and value > operand):
                    return False
                if op == "$in" and value not in operand:
                    return False
        elif value != cond:
            return False
    return True


class _Result:
    def __init__(self, deleted_count: int = 0) -> None:
        self.deleted_count = deleted_count


class FakeCollection:
    """The handful of pymongo Collection methods Store relies on."""

    def __init__(self) -> None:
        self.docs: List[Dict[str, Any]] = []
        self.indexes: List[tuple] = []

    def create_index(self, keys, **kwargs) -> str:
        self.indexes.append((keys, kwargs))
        return "_".join(k for k, _ in keys)

    def find_one(self, flt: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for doc in self.docs:
            if _matches(doc, flt):
                return copy.deepcopy(doc)
        return None

    def find(self, flt: Dict[str, Any], projection=None) -> List[Dict[str, Any]]:
        return [copy.deepcopy(d) for d in self.docs if _matches(d, flt)]

    def insert_one(self, doc: Dict[str, Any]) -> None:
        doc = dict(doc)
        doc.setdefault("_id", ObjectId())
        self.docs.append(doc)

    def _apply(self, doc: Dict[str, Any], update: Dict[str, Any], inserting: bool) -> None:
        doc.update(update.get("$set", {}))
        if inserting:
            doc.update(update.get("$setOnInsert", {}))

    def update_one(self, flt, update, upsert: bool = False) -> None:
        self.find_one_and_update(flt, update, upsert=upsert)

    def find_one_and_update(self, flt, update, upsert: bool = False, return_document=ReturnDocument.BEFORE):
        for doc in self.docs:
            if _matches(doc, flt):
                before = copy.deepcopy(doc)
                self._apply(doc, update, inserting=False)
                return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else before
        if not upsert:
            return None
        doc = {"_id": ObjectId(), **{k: v for k, v in flt.items() if not isinstance(v, dict)}}
        self._apply(doc, update, inserting=True)
        self.docs.append(doc)
        return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else None

    def delete_many(self, flt) -> _Result:
        keep = [d for d in self.docs if not _matches(d, flt)]
        deleted = len(self.docs) - len(keep)
        self.docs = keep
        return _Result(deleted)


class FakeDatabase:
    def __init__(self) -> None:
        self._collections: Dict[str, FakeCollection] = {}
        self.client = MagicMock()

    def __getitem__(self, name: str) -> FakeCollection:
        return self._collections.setdefault(name, FakeCollection())


@pytest.fixture
def store() -> Store:
    return Store(FakeDatabase())


@pytest.fixture
def stored_user(store: Store):
    grant = TokenGrant(access_token="access-1", refresh_token="refresh-1", expires_in=3600)
    profile = {"id": "spotify-user", "display_name": "Test User", "email": "t@example.com"}
    return store.upsert_user_login("spotify-user", grant, profile, NOW)


class FakeResponse:
    def __init__(self, status_code: int, json_data: Any = None) -> None:
        self.status_code = status_code
        self._json_data = json_data if json_data is not None else {}
        self.text = json.dumps(self._json_data)

    def json(self) -> Any:
        return self._json_data

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class FakeHTTPClient:
    """
    Scripted stand-in for httpx.Client. `routes` maps (method, url suffix) to a
    FakeResponse or an exception instance to raise.
    """

    def __init__(self, routes: Optional[Dict[tuple, Any]] = None) -> None:
        self.routes = routes or {}
        self.calls: List[tuple] = []

    def _dispatch(self, method: str, url: str, kwargs: dict) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        for (m, suffix), outcome in self.routes.items():
            if m == method and url.endswith(suffix):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return FakeResponse(404, {"error": "not_found"})

    def post(self, url: str, **kwargs) -> FakeResponse:
        return self._dispatch("POST", url, kwargs)

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        return self._dispatch(method, url, kwargs)

    def close(self) -> None:
        return None

