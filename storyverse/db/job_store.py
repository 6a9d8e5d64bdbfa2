"""
Job Store - SQLite-backed persistence for transformation jobs and the
story universes they produce.

All JSON fields are automatically serialized/deserialized.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Optional


STAGE_COUNT = 6
STAGE_STATUSES = ("pending", "running", "done", "failed")
JOB_STATUSES = ("queued", "running", "completed", "failed")
STORY_LENGTHS = ("short", "medium", "long")


def stage_key(stage: int) -> str:
    """Key used for a stage in the statuses and artifacts records."""
    return f"stage{stage}"


def empty_stage_statuses() -> dict:
    """Six-slot statuses record with every stage pending."""
    return {stage_key(i): "pending" for i in range(STAGE_COUNT)}


class JobStore:
    """
    SQLite-backed store for jobs, universes, characters, locations and cards.

    Each operation opens its own connection, so one store instance can be
    shared by concurrently running jobs.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)

    def connect(self) -> sqlite3.Connection:
        """Create a database connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def ensure_schema(self) -> None:
        """Initialize database schema from schema.sql."""
        schema_path = Path(__file__).with_name("schema.sql")
        sql = schema_path.read_text(encoding="utf-8")
        with self.connect() as conn:
            conn.executescript(sql)
            conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction that takes the database lock up front."""
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # =========================================================================
    # Job Operations
    # =========================================================================

    def create_job(
        self,
        story_length: str = "medium",
        source_type: str = "unknown",
        source_file_name: Optional[str] = None
    ) -> dict:
        """Create a queued job with all six stages pending."""
        if story_length not in STORY_LENGTHS:
            raise ValueError(f"Unknown story length: {story_length}")
        now = _now()
        with self.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO transformation_jobs (status, current_stage,
                    stage_statuses_json, artifacts_json, story_length,
                    source_type, source_file_name, created_at, updated_at)
                VALUES ('queued', 0, ?, '{}', ?, ?, ?, ?, ?)
                """,
                (
                    json_dumps(empty_stage_statuses()),
                    story_length,
                    source_type,
                    source_file_name,
                    now,
                    now
                )
            )
            conn.commit()
            job_id = cursor.lastrowid
        return self.get_job(job_id)

    def get_job(self, job_id: int) -> Optional[dict]:
        """Get job by ID."""
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM transformation_jobs WHERE id = ?",
                (job_id,)
            ).fetchone()
        if not row:
            return None
        return _parse_job_row(row)

    def list_jobs(self, status: Optional[str] = None) -> list[dict]:
        """List jobs, newest first, optionally filtered by status."""
        query = "SELECT * FROM transformation_jobs"
        params: tuple = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status,)
        query += " ORDER BY id DESC"
        with self.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_parse_job_row(row) for row in rows]

    def update_job(self, job_id: int, **fields: Any) -> None:
        """Update job columns by their dict names (see _parse_job_row)."""
        if not fields:
            return
        with self.connect() as conn:
            _write_job_fields(conn, job_id, fields)
            conn.commit()

    def modify_job(
        self,
        job_id: int,
        mutate: Callable[[dict], dict]
    ) -> Optional[dict]:
        """
        Read-modify-write a job inside one locked transaction.

        ``mutate`` receives the current job dict and returns the fields to
        write. Returns the updated job, or None if the job does not exist.
        """
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transformation_jobs WHERE id = ?",
                (job_id,)
            ).fetchone()
            if not row:
                return None
            updates = mutate(_parse_job_row(row))
            if updates:
                _write_job_fields(conn, job_id, updates)
        return self.get_job(job_id)

    # =========================================================================
    # Universe Operations
    # =========================================================================

    def materialize_universe(
        self,
        universe: dict,
        characters: list[dict],
        locations: list[dict],
        cards: list[dict]
    ) -> int:
        """
        Persist a universe with its characters, locations and cards.

        Everything is written in one transaction; on any error nothing is
        kept. Cards may reference characters by slug through
        ``primary_character_slugs``. Returns the new universe id.
        """
        now = _now()
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO universes (name, slug, description, style_notes,
                    visual_mode, release_mode, intro_cards_count,
                    source_guardrails_json, design_guide_json,
                    project_bible_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    universe["name"],
                    universe["slug"],
                    universe.get("description", ""),
                    universe.get("style_notes", ""),
                    universe.get("visual_mode", "engine_generated"),
                    universe.get("release_mode", "daily"),
                    universe.get("intro_cards_count", 3),
                    _dumps_optional(universe.get("source_guardrails")),
                    _dumps_optional(universe.get("design_guide")),
                    _dumps_optional(universe.get("project_bible")),
                    now
                )
            )
            universe_id = cursor.lastrowid

            slug_to_id: dict[str, int] = {}
            for char in characters:
                cursor = conn.execute(
                    """
                    INSERT INTO characters (universe_id, character_slug, name,
                        role, description, system_prompt, secrets_json,
                        chat_profile_json, visual_profile_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        universe_id,
                        char["character_slug"],
                        char["name"],
                        char.get("role", "Character"),
                        char.get("description", ""),
                        char["system_prompt"],
                        json_dumps(char.get("secrets", [])),
                        json_dumps(char.get("chat_profile", {})),
                        _dumps_optional(char.get("visual_profile"))
                    )
                )
                slug_to_id[char["character_slug"]] = cursor.lastrowid

            for loc in locations:
                conn.execute(
                    """
                    INSERT INTO locations (universe_id, location_slug, name, description)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        universe_id,
                        loc["location_slug"],
                        loc["name"],
                        loc.get("description", "")
                    )
                )

            for card in cards:
                character_ids = [
                    slug_to_id[slug]
                    for slug in card.get("primary_character_slugs", [])
                    if slug in slug_to_id
                ]
                conn.execute(
                    """
                    INSERT INTO cards (universe_id, season, day_index, title,
                        captions_json, scene_text, recap_text, effect_template,
                        status, publish_at, image_generation_json,
                        primary_character_ids_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        universe_id,
                        card.get("season", 1),
                        card["day_index"],
                        card["title"],
                        json_dumps(card.get("captions", [])),
                        card.get("scene_text", ""),
                        card.get("recap_text", ""),
                        card.get("effect_template", "ken-burns"),
                        card.get("status", "published"),
                        card["publish_at"],
                        _dumps_optional(card.get("image_generation")),
                        json_dumps(character_ids) if character_ids else None
                    )
                )

        return universe_id

    def get_universe(self, universe_id: int) -> Optional[dict]:
        """Get universe by ID."""
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM universes WHERE id = ?",
                (universe_id,)
            ).fetchone()
        if not row:
            return None
        return _parse_universe_row(row)

    def update_universe(
        self,
        universe_id: int,
        design_guide: Optional[dict] = None,
        project_bible: Optional[dict] = None
    ) -> None:
        """Attach a design guide or project bible to a universe."""
        updates = []
        params: list = []

        if design_guide is not None:
            updates.append("design_guide_json = ?")
            params.append(json_dumps(design_guide))
        if project_bible is not None:
            updates.append("project_bible_json = ?")
            params.append(json_dumps(project_bible))

        if updates:
            params.append(universe_id)
            with self.connect() as conn:
                conn.execute(
                    f"UPDATE universes SET {', '.join(updates)} WHERE id = ?",
                    params
                )
                conn.commit()

    def get_characters_by_universe(self, universe_id: int) -> list[dict]:
        """Get all characters of a universe in creation order."""
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM characters WHERE universe_id = ? ORDER BY id",
                (universe_id,)
            ).fetchall()
        return [_parse_character_row(row) for row in rows]

    def get_locations_by_universe(self, universe_id: int) -> list[dict]:
        """Get all locations of a universe in creation order."""
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM locations WHERE universe_id = ? ORDER BY id",
                (universe_id,)
            ).fetchall()
        return [dict(row) for row in rows]

    def get_cards_by_universe(self, universe_id: int) -> list[dict]:
        """Get all cards of a universe ordered by day index."""
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM cards WHERE universe_id = ? ORDER BY day_index",
                (universe_id,)
            ).fetchall()
        return [_parse_card_row(row) for row in rows]

    def get_card(self, card_id: int) -> Optional[dict]:
        """Get card by ID."""
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM cards WHERE id = ?",
                (card_id,)
            ).fetchone()
        if not row:
            return None
        return _parse_card_row(row)

    def set_card_bible_version(self, card_id: int, version_id: str) -> None:
        """Record which bible version a card's media was generated against."""
        with self.connect() as conn:
            conn.execute(
                "UPDATE cards SET bible_version_id_used = ? WHERE id = ?",
                (version_id, card_id)
            )
            conn.commit()


# =============================================================================
# Helper Functions
# =============================================================================

# dict name -> (column, is_json)
_JOB_COLUMNS = {
    "status": ("status", False),
    "current_stage": ("current_stage", False),
    "stage_statuses": ("stage_statuses_json", True),
    "artifacts": ("artifacts_json", True),
    "story_length": ("story_length", False),
    "source_type": ("source_type", False),
    "source_file_name": ("source_file_name", False),
    "output_universe_id": ("output_universe_id", False),
    "error_message_user": ("error_message_user", False),
    "error_message_dev": ("error_message_dev", False),
}


def _write_job_fields(conn: sqlite3.Connection, job_id: int, fields: dict) -> None:
    updates = []
    params = []
    for name, value in fields.items():
        if name not in _JOB_COLUMNS:
            raise ValueError(f"Unknown job field: {name}")
        column, is_json = _JOB_COLUMNS[name]
        updates.append(f"{column} = ?")
        params.append(json_dumps(value) if is_json else value)
    updates.append("updated_at = ?")
    params.append(_now())
    params.append(job_id)
    conn.execute(
        f"UPDATE transformation_jobs SET {', '.join(updates)} WHERE id = ?",
        params
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_dumps(value: Any) -> str:
    """Serialize value to JSON string."""
    return json.dumps(value, ensure_ascii=True, separators=(",", ":"))


def json_loads(value: str) -> Any:
    """Deserialize JSON string to value."""
    return json.loads(value) if value else None


def _dumps_optional(value: Any) -> Optional[str]:
    return json_dumps(value) if value is not None else None


def _parse_job_row(row: sqlite3.Row) -> dict:
    """Parse a job row to dict."""
    return {
        "id": row["id"],
        "status": row["status"],
        "current_stage": row["current_stage"],
        "stage_statuses": json_loads(row["stage_statuses_json"]) or empty_stage_statuses(),
        "artifacts": json_loads(row["artifacts_json"]) or {},
        "story_length": row["story_length"],
        "source_type": row["source_type"],
        "source_file_name": row["source_file_name"],
        "output_universe_id": row["output_universe_id"],
        "error_message_user": row["error_message_user"],
        "error_message_dev": row["error_message_dev"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"]
    }


def _parse_universe_row(row: sqlite3.Row) -> dict:
    """Parse a universe row to dict."""
    return {
        "id": row["id"],
        "name": row["name"],
        "slug": row["slug"],
        "description": row["description"],
        "style_notes": row["style_notes"],
        "visual_mode": row["visual_mode"],
        "release_mode": row["release_mode"],
        "intro_cards_count": row["intro_cards_count"],
        "source_guardrails": json_loads(row["source_guardrails_json"]),
        "design_guide": json_loads(row["design_guide_json"]),
        "project_bible": json_loads(row["project_bible_json"]),
        "created_at": row["created_at"]
    }


def _parse_character_row(row: sqlite3.Row) -> dict:
    """Parse a character row to dict."""
    return {
        "id": row["id"],
        "universe_id": row["universe_id"],
        "character_slug": row["character_slug"],
        "name": row["name"],
        "role": row["role"],
        "description": row["description"],
        "system_prompt": row["system_prompt"],
        "secrets": json_loads(row["secrets_json"]) or [],
        "chat_profile": json_loads(row["chat_profile_json"]) or {},
        "visual_profile": json_loads(row["visual_profile_json"])
    }


def _parse_card_row(row: sqlite3.Row) -> dict:
    """Parse a card row to dict."""
    return {
        "id": row["id"],
        "universe_id": row["universe_id"],
        "season": row["season"],
        "day_index": row["day_index"],
        "title": row["title"],
        "captions": json_loads(row["captions_json"]) or [],
        "scene_text": row["scene_text"],
        "recap_text": row["recap_text"],
        "effect_template": row["effect_template"],
        "status": row["status"],
        "publish_at": row["publish_at"],
        "image_generation": json_loads(row["image_generation_json"]),
        "primary_character_ids": json_loads(row["primary_character_ids_json"]),
        "bible_version_id_used": row["bible_version_id_used"]
    }
