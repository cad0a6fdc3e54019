"""Profile store: CRUD for skill profiles, predictions and progress events."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime

from mentorlens.errors import ProfileNotFound, StoreError
from mentorlens.models import (
    Mastery,
    Prediction,
    PredictionResponse,
    ProgressEvent,
    SkillLevel,
    SkillProfile,
)


class ProfileStore:
    """Data access layer for the mentorlens SQLite database.

    One row per user in `profiles` keeps exactly one live profile per user id.
    Write failures raise StoreError; callers treat that as fatal.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, user_id: str) -> SkillProfile:
        row = self._conn.execute(
            "SELECT * FROM profiles WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            raise ProfileNotFound(f"No profile for user '{user_id}'")

        mastery_rows = self._conn.execute(
            "SELECT * FROM concept_mastery WHERE user_id = ? ORDER BY concept_id",
            (user_id,),
        ).fetchall()
        return SkillProfile(
            user_id=row["user_id"],
            skill_level=SkillLevel(row["skill_level"]),
            mastery={
                m["concept_id"]: Mastery(
                    level=m["level"],
                    last_practiced=_parse_dt(m["last_practiced"]),
                    challenges_completed=m["challenges_completed"],
                )
                for m in mastery_rows
            },
            predictions_correct=row["predictions_correct"],
            predictions_answered=row["predictions_answered"],
            time_saved_minutes=row["time_saved_minutes"],
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    def put(self, profile: SkillProfile, event: ProgressEvent | None = None) -> None:
        """Replace the stored profile and its mastery map, and log `event`, in one transaction."""
        try:
            with self._conn:
                self._write_profile(profile)
                if event is not None:
                    self._write_event(profile.user_id, event)
        except sqlite3.Error as e:
            raise StoreError(f"Could not write profile for '{profile.user_id}': {e}") from e

    def answer_prediction(self, profile: SkillProfile, event: ProgressEvent) -> bool:
        """Record a prediction response together with the profile it credits.

        The response is set at most once. Returns False, writing nothing, when
        the prediction is unknown or already answered. A failed write rolls
        back the response too, so the prediction can be answered again.
        """
        try:
            with self._conn:
                cursor = self._conn.execute(
                    """UPDATE predictions SET response = ?, responded_at = ?
                    WHERE id = ? AND user_id = ? AND response IS NULL""",
                    (
                        event.response.value,
                        event.occurred_at.isoformat(),
                        event.prediction_id,
                        profile.user_id,
                    ),
                )
                if cursor.rowcount == 0:
                    return False
                self._write_profile(profile)
                self._write_event(profile.user_id, event)
        except sqlite3.Error as e:
            raise StoreError(
                f"Could not record response for {event.prediction_id}: {e}"
            ) from e
        return True

    def _write_profile(self, profile: SkillProfile) -> None:
        self._conn.execute(
            """INSERT INTO profiles
            (user_id, skill_level, predictions_correct, predictions_answered,
             time_saved_minutes, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                skill_level = excluded.skill_level,
                predictions_correct = excluded.predictions_correct,
                predictions_answered = excluded.predictions_answered,
                time_saved_minutes = excluded.time_saved_minutes,
                updated_at = excluded.updated_at""",
            (
                profile.user_id,
                profile.skill_level.value,
                profile.predictions_correct,
                profile.predictions_answered,
                profile.time_saved_minutes,
                profile.created_at.isoformat(),
                profile.updated_at.isoformat(),
            ),
        )
        self._conn.execute("DELETE FROM concept_mastery WHERE user_id = ?", (profile.user_id,))
        self._conn.executemany(
            """INSERT INTO concept_mastery
            (user_id, concept_id, level, last_practiced, challenges_completed)
            VALUES (?, ?, ?, ?, ?)""",
            [
                (
                    profile.user_id,
                    concept_id,
                    mastery.level,
                    _format_dt(mastery.last_practiced),
                    mastery.challenges_completed,
                )
                for concept_id, mastery in sorted(profile.mastery.items())
            ],
        )

    def _write_event(self, user_id: str, event: ProgressEvent) -> None:
        payload = {
            "concept_ids": event.concept_ids,
            "prediction_id": event.prediction_id,
            "response": event.response.value if event.response else None,
            "time_saved_minutes": event.time_saved_minutes,
        }
        self._conn.execute(
            """INSERT INTO progress_events (user_id, kind, payload, occurred_at)
            VALUES (?, ?, ?, ?)""",
            (user_id, event.kind.value, json.dumps(payload), event.occurred_at.isoformat()),
        )

    def delete(self, user_id: str) -> bool:
        """Delete a profile. Returns False when there was nothing to delete."""
        try:
            with self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM profiles WHERE user_id = ?", (user_id,)
                )
        except sqlite3.Error as e:
            raise StoreError(f"Could not delete profile for '{user_id}': {e}") from e
        return cursor.rowcount > 0

    def save_prediction(self, prediction: Prediction) -> None:
        try:
            with self._conn:
                self._conn.execute(
                    """INSERT INTO predictions
                    (id, user_id, code_context, predicted_mistake, follow_up_question,
                     mental_model, confidence, response, created_at, responded_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        prediction.id,
                        prediction.user_id,
                        prediction.code_context,
                        prediction.predicted_mistake,
                        prediction.follow_up_question,
                        prediction.mental_model,
                        prediction.confidence,
                        prediction.response.value if prediction.response else None,
                        prediction.created_at.isoformat(),
                        _format_dt(prediction.responded_at),
                    ),
                )
        except sqlite3.Error as e:
            raise StoreError(f"Could not save prediction {prediction.id}: {e}") from e

    def get_prediction(self, prediction_id: str) -> Prediction | None:
        row = self._conn.execute(
            "SELECT * FROM predictions WHERE id = ?", (prediction_id,)
        ).fetchone()
        return _row_to_prediction(row) if row else None

    def list_predictions(self, user_id: str, limit: int = 20) -> list[Prediction]:
        rows = self._conn.execute(
            """SELECT * FROM predictions WHERE user_id = ?
            ORDER BY created_at DESC LIMIT ?""",
            (user_id, limit),
        ).fetchall()
        return [_row_to_prediction(row) for row in rows]

    def count_events(self, user_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM progress_events WHERE user_id = ?", (user_id,)
        ).fetchone()[0]


def _row_to_prediction(row: sqlite3.Row) -> Prediction:
    return Prediction(
        id=row["id"],
        user_id=row["user_id"],
        code_context=row["code_context"] or "",
        predicted_mistake=row["predicted_mistake"] or "",
        follow_up_question=row["follow_up_question"] or "",
        mental_model=row["mental_model"] or "",
        confidence=row["confidence"] or 0.0,
        response=PredictionResponse(row["response"]) if row["response"] else None,
        created_at=_parse_dt(row["created_at"]),
        responded_at=_parse_dt(row["responded_at"]),
    )


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
