"""
Session Persistence Adapter.

Serializes a completed SessionSummary and hands it to an external store.
Stores never raise: every failure comes back as a SaveResult carrying
ErrorKind.PERSISTENCE_FAILURE so the caller can retry or cache locally.

Wire format (camelCase, as accepted by the session API):
    {"startTime", "endTime", "totalSteps", "totalDistanceKm", "calories",
     "avgSpeedKmh", "maxSpeedKmh", "path": [{"lat", "lng", "timestamp", ...}]}
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .config import Settings, get_settings
from .models import PositionFix, SaveResult, SessionSummary
from .session import SessionStore

logger = logging.getLogger(__name__)


class PathPoint(BaseModel):
    """One point of the session path."""

    model_config = ConfigDict(populate_by_name=True)

    lat: float
    lng: float
    timestamp: int  # epoch milliseconds
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    altitude: Optional[float] = None

    @classmethod
    def from_fix(cls, fix: PositionFix) -> "PathPoint":
        return cls(**fix.to_dict())

    def to_fix(self) -> PositionFix:
        return PositionFix(
            latitude=self.lat,
            longitude=self.lng,
            timestamp=datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc),
            accuracy_m=self.accuracy if self.accuracy is not None else 0.0,
            speed_mps=self.speed,
            altitude_m=self.altitude,
        )


class SessionPayload(BaseModel):
    """Serialized SessionSummary."""

    model_config = ConfigDict(populate_by_name=True)

    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")
    total_steps: int = Field(alias="totalSteps", ge=0)
    total_distance_km: float = Field(alias="totalDistanceKm", ge=0)
    calories: int = Field(ge=0)
    avg_speed_kmh: float = Field(default=0.0, alias="avgSpeedKmh")
    max_speed_kmh: float = Field(default=0.0, alias="maxSpeedKmh")
    path: List[PathPoint] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: SessionSummary) -> "SessionPayload":
        return cls(
            start_time=summary.start_time,
            end_time=summary.end_time,
            total_steps=summary.total_steps,
            total_distance_km=round(summary.total_distance_km, 3),
            calories=summary.total_calories,
            avg_speed_kmh=round(summary.average_speed_kmh, 2),
            max_speed_kmh=round(summary.max_speed_kmh, 2),
            path=[PathPoint.from_fix(f) for f in summary.path],
        )

    def to_summary(self) -> SessionSummary:
        return SessionSummary(
            start_time=self.start_time,
            end_time=self.end_time,
            total_distance_km=self.total_distance_km,
            total_steps=self.total_steps,
            total_calories=self.calories,
            average_speed_kmh=self.avg_speed_kmh,
            max_speed_kmh=self.max_speed_kmh,
            path=tuple(p.to_fix() for p in self.path),
        )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class HttpSessionStore:
    """POSTs summaries to the session API."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.api_url = (api_url or settings.session_api_url).rstrip("/")
        self.token = token if token is not None else settings.session_api_token
        self.timeout = timeout if timeout is not None else settings.session_api_timeout_s
        self.client = client

    @property
    def endpoint(self) -> str:
        return f"{self.api_url}/api/track/session"

    def save(self, summary: SessionSummary) -> SaveResult:
        """
        Save a summary through the session API.

        Returns:
            SaveResult with the server's sessionId, or a persistence failure
        """
        payload = SessionPayload.from_summary(summary).to_wire()
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        poster = self.client or httpx

        try:
            response = poster.post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)
        except httpx.ConnectError:
            logger.warning(f"[STORE] Session API not available at {self.api_url}")
            return SaveResult.failure(f"Session API not available at {self.api_url}")
        except httpx.HTTPError as e:
            logger.error(f"[STORE] Failed to save session: {e}")
            return SaveResult.failure(f"Failed to save session: {e}")

        if not response.is_success:
            logger.warning(f"[STORE] Save failed with status {response.status_code}: {response.text}")
            return SaveResult.failure(f"Status {response.status_code}: {response.text}")

        try:
            body = response.json()
        except ValueError:
            body = None
        session_id = body.get("sessionId") if isinstance(body, dict) else None
        if session_id is None:
            logger.warning(f"[STORE] Unexpected session API response: {response.text}")
            return SaveResult.failure("Session API response did not include a sessionId")

        logger.info(f"[STORE] Session saved: {session_id}")
        return SaveResult(session_id=str(session_id))


class JsonlSessionStore:
    """
    Local cache writing one JSON line per session.

    Cached sessions can be pushed to another store later with retry_pending().
    """

    def __init__(self, path: Optional[str] = None, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.path = Path(path or settings.session_cache_path)

    def save(self, summary: SessionSummary) -> SaveResult:
        session_id = f"local-{uuid.uuid4().hex[:12]}"
        record = {
            "sessionId": session_id,
            "cachedAt": datetime.now(timezone.utc).isoformat(),
            "session": SessionPayload.from_summary(summary).to_wire(),
        }
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            logger.error(f"[STORE] Failed to write session cache {self.path}: {e}")
            return SaveResult.failure(f"Failed to write {self.path}: {e}")

        logger.info(f"[STORE] Session cached to {self.path} as {session_id}")
        return SaveResult(session_id=session_id, cached=True)

    def _read_records(self) -> List[Tuple[str, Optional[Tuple[str, SessionSummary]]]]:
        """Raw cache lines, each paired with its parsed (sessionId, summary) or None."""
        if not self.path.exists():
            return []

        records = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    payload = SessionPayload.model_validate(record["session"])
                    records.append((line, (record["sessionId"], payload.to_summary())))
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"[STORE] Unreadable cached session kept as is: {e}")
                    records.append((line, None))
        return records

    def load_pending(self) -> List[Tuple[str, SessionSummary]]:
        """Read cached sessions, skipping lines that no longer parse."""
        return [entry for _, entry in self._read_records() if entry is not None]

    def retry_pending(self, store: SessionStore) -> int:
        """
        Push cached sessions to another store.

        Sessions that still fail and lines that no longer parse stay in the
        cache unchanged, under their original sessionId.

        Returns:
            Number of sessions saved
        """
        records = self._read_records()
        if not any(entry is not None for _, entry in records):
            return 0

        kept = []
        saved = 0
        for line, entry in records:
            if entry is None:
                kept.append(line)
                continue
            session_id, summary = entry
            try:
                result = store.save(summary)
            except Exception as e:
                logger.error(f"[STORE] Store raised while retrying {session_id}: {e}")
                result = SaveResult.failure(str(e))
            if result.ok:
                saved += 1
                logger.info(f"[STORE] Cached session {session_id} saved as {result.session_id}")
            else:
                kept.append(line)

        self._rewrite(kept)
        return saved

    def _rewrite(self, lines: List[str]) -> None:
        if not lines:
            self.path.unlink()
            return
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")
        os.replace(tmp_path, self.path)


class FallbackSessionStore:
    """Tries the primary store, caching locally when it fails."""

    def __init__(self, primary: SessionStore, cache: JsonlSessionStore):
        self.primary = primary
        self.cache = cache

    def save(self, summary: SessionSummary) -> SaveResult:
        result = self.primary.save(summary)
        if result.ok:
            return result

        cached = self.cache.save(summary)
        if cached.ok:
            return SaveResult.failure(
                f"{result.message}; cached locally as {cached.session_id}",
                cached=True,
            )
        return SaveResult.failure(f"{result.message}; local cache failed: {cached.message}")
