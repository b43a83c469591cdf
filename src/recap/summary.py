"""
AI summaries of a user's listening data.

Summaries are generated by a Groq-hosted open model and cached per user:
the first successful summary is reused for every later request.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List

from groq import Groq, GroqError

from .config import AIConfig
from .store import Store

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a friendly music critic. Given a listener's top tracks, write a short, "
    "warm summary (3-5 sentences) of their taste: genres, moods and standout artists. "
    "Plain text only, no markdown."
)


class SummaryError(Exception):
    """The AI endpoint failed or returned nothing usable."""


@dataclass
class SummaryResult:
    summary: str
    cached: bool


def _describe_track(rank: int, track: dict) -> str:
    artists = ", ".join(a.get("name", "") for a in track.get("artists") or [] if isinstance(a, dict))
    line = f"{rank}. {track.get('name', 'Unknown')}"
    if artists:
        line += f" by {artists}"
    album = (track.get("album") or {}).get("name")
    if album:
        line += f" ({album})"
    return line


def build_prompt(listening_data: Any) -> str:
    """
    Turn listening data into prompt text.

    A Spotify top-tracks payload (a dict with `items`) is compacted to one line
    per track; anything else is passed through as JSON.
    """
    items = listening_data.get("items") if isinstance(listening_data, dict) else None
    if isinstance(items, list) and items and all(isinstance(t, dict) for t in items):
        lines: List[str] = [_describe_track(i, t) for i, t in enumerate(items, start=1)]
        body = "\n".join(lines)
    else:
        body = json.dumps(listening_data, ensure_ascii=False)
    return f"Provide a summary of the following listening data:\n{body}"


class Summarizer:
    def __init__(self, cfg: AIConfig, *, timeout: float = 30.0) -> None:
        self._model = cfg.model
        self._client = Groq(api_key=cfg.api_key, timeout=timeout)

    def summarize(self, listening_data: Any) -> str:
        logger.debug(f"Calling Groq API for summary: model={self._model}")
        try:
            resp = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(listening_data)},
                ],
                temperature=1.0,
                max_tokens=300,
            )
        except GroqError as exc:
            logger.error(f"Groq API call failed: {exc}")
            raise SummaryError(f"Summary generation failed: {exc}") from exc

        text = resp.choices[0].message.content if resp.choices else ""
        if not text or not text.strip():
            logger.error("Groq API returned an empty summary")
            raise SummaryError("Summary generation returned no text.")
        return text.strip()


def get_or_create_summary(
    user_id: str,
    listening_data: Any,
    store: Store,
    summarizer: Summarizer,
    now: datetime,
) -> SummaryResult:
    """
    Return the cached summary for `user_id`, generating and storing one if absent.

    Raises ValueError when nothing is cached and no listening data was given.
    """
    existing = store.get_summary(user_id)
    if existing is not None:
        logger.info(f"Returning cached summary for user_id={user_id}")
        return SummaryResult(summary=existing.text, cached=True)

    if not listening_data:
        raise ValueError("No listening data provided")

    text = summarizer.summarize(listening_data)
    stored = store.save_summary(user_id, text, now)
    logger.info(f"Generated summary for user_id={user_id} ({len(stored.text)} chars)")
    return SummaryResult(summary=stored.text, cached=stored.text != text)


__all__ = ["SummaryError", "SummaryResult", "Summarizer", "build_prompt", "get_or_create_summary"]
