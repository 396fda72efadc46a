"""Database module for the weather broadcast generator"""

import sqlite3
from pathlib import Path
from typing import Optional, List, Dict, Any

from .models import (
    Episode, EpisodeStage, WeatherSnapshot, CacheEntry, ImageCategory
)
from .config import DB_PATH
from .utils.helpers import generate_id, utc_now, to_iso
from .utils.logging import get_logger

logger = get_logger(__name__)

# Columns the orchestrator may write through update_episode_fields
EPISODE_MUTABLE_COLUMNS = {
    'location', 'weather_data_timestamp', 'weather_is_stale', 'stale_age_hours',
    'script', 'audio_path', 'video_path', 'duration_secs', 'error',
}


class BroadcastDatabase:
    """Handle all database operations for episodes, weather snapshots and the artifact cache"""

    def __init__(self, db_path: Path = DB_PATH):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_database(self):
        """Initialize database tables"""
        try:
            with self._connect() as conn:
                self._create_episodes_table(conn)
                self._create_snapshots_table(conn)
                self._create_cache_table(conn)
                self._create_indexes(conn)
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Database initialization error: {e}")
            raise

    def _create_episodes_table(self, conn: sqlite3.Connection):
        """Create the episodes table"""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS episodes (
                id TEXT PRIMARY KEY,
                broadcast_date TEXT NOT NULL UNIQUE,
                broadcast_time TEXT NOT NULL,
                episode_number INTEGER NOT NULL,
                stage TEXT NOT NULL DEFAULT 'init'
                    CHECK (stage IN ('init', 'fetching', 'generating', 'synthesizing',
                                     'syncing', 'composing', 'done', 'error')),
                location TEXT,
                weather_data_timestamp TEXT,
                weather_is_stale INTEGER DEFAULT 0,
                stale_age_hours INTEGER,
                script TEXT,
                audio_path TEXT,
                video_path TEXT,
                duration_secs REAL,
                error TEXT,
                created_at TEXT,
                updated_at TEXT,
                completed_at TEXT
            )
        """)

    def _create_snapshots_table(self, conn: sqlite3.Connection):
        """Create the weather_snapshots table"""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS weather_snapshots (
                id TEXT PRIMARY KEY,
                episode_id TEXT REFERENCES episodes(id),
                location TEXT NOT NULL,
                discussion_raw TEXT,
                forecast_raw TEXT,
                parsed_data TEXT,
                fetched_at TEXT NOT NULL,
                issued_at TEXT
            )
        """)

    def _create_cache_table(self, conn: sqlite3.Connection):
        """Create the artifact_cache table"""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS artifact_cache (
                id TEXT PRIMARY KEY,
                fingerprint TEXT NOT NULL,
                category TEXT NOT NULL
                    CHECK (category IN ('character', 'atmospheric', 'weather_graphic')),
                epoch INTEGER NOT NULL,
                artifact_path TEXT NOT NULL,
                descriptor TEXT NOT NULL,
                generator TEXT NOT NULL,
                created_at TEXT,
                last_used_at TEXT,
                use_count INTEGER DEFAULT 1
            )
        """)

    def _create_indexes(self, conn: sqlite3.Connection):
        """Create database indexes"""
        conn.execute("CREATE INDEX IF NOT EXISTS idx_episodes_stage ON episodes(stage)")
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_snapshots_location_fetched
            ON weather_snapshots(location, fetched_at DESC)
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_snapshots_episode ON weather_snapshots(episode_id)")
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_cache_lookup
            ON artifact_cache(fingerprint, category, epoch)
        """)

    @staticmethod
    def _rows_to_dicts(cursor: sqlite3.Cursor, rows) -> List[Dict[str, Any]]:
        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row)) for row in rows]

    # ===== Episodes =====

    def get_episode_by_date(self, broadcast_date: str) -> Optional[Episode]:
        """Get the episode for a broadcast date, if any"""
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT * FROM episodes WHERE broadcast_date = ?", (broadcast_date,)
            )
            rows = self._rows_to_dicts(cursor, cursor.fetchall())
        return Episode.from_dict(rows[0]) if rows else None

    def get_episode(self, episode_id: str) -> Optional[Episode]:
        """Get an episode by id"""
        with self._connect() as conn:
            cursor = conn.execute("SELECT * FROM episodes WHERE id = ?", (episode_id,))
            rows = self._rows_to_dicts(cursor, cursor.fetchall())
        return Episode.from_dict(rows[0]) if rows else None

    def get_next_episode_number(self, start_number: int = 1) -> int:
        """One greater than the highest episode number, or start_number for an empty table"""
        with self._connect() as conn:
            result = conn.execute("SELECT MAX(episode_number) FROM episodes").fetchone()
        current_max = result[0] if result else None
        return start_number if current_max is None else current_max + 1

    def create_episode(self, broadcast_date: str, broadcast_time: str,
                       location: Optional[str] = None, start_number: int = 1) -> Episode:
        """Create the episode row for a date in stage init.

        If another run created the row first, the existing row is returned.
        """
        now = to_iso(utc_now())
        try:
            with self._connect() as conn:
                result = conn.execute("SELECT MAX(episode_number) FROM episodes").fetchone()
                current_max = result[0] if result else None
                episode_number = start_number if current_max is None else current_max + 1

                episode = Episode(
                    id=generate_id(),
                    broadcast_date=broadcast_date,
                    broadcast_time=broadcast_time,
                    episode_number=episode_number,
                    stage=EpisodeStage.INIT,
                    location=location,
                    created_at=now,
                    updated_at=now,
                )
                data = episode.to_dict()
                columns = ', '.join(data.keys())
                placeholders = ', '.join('?' for _ in data)
                conn.execute(
                    f"INSERT INTO episodes ({columns}) VALUES ({placeholders})",
                    tuple(data.values())
                )
                conn.commit()
            logger.info(f"💾 Created episode #{episode_number} for {broadcast_date}")
            return episode
        except sqlite3.IntegrityError:
            existing = self.get_episode_by_date(broadcast_date)
            if existing is None:
                raise
            logger.warning(f"Episode for {broadcast_date} already exists (#{existing.episode_number})")
            return existing

    def update_episode_stage(self, episode_id: str, stage: EpisodeStage,
                             error: Optional[str] = None) -> Episode:
        """Persist a stage transition and return the updated row"""
        now = to_iso(utc_now())
        try:
            with self._connect() as conn:
                if stage is EpisodeStage.DONE:
                    conn.execute("""
                        UPDATE episodes
                        SET stage = ?, updated_at = ?, completed_at = ?, error = NULL
                        WHERE id = ?
                    """, (stage.value, now, now, episode_id))
                elif stage is EpisodeStage.ERROR:
                    conn.execute("""
                        UPDATE episodes
                        SET stage = ?, updated_at = ?, error = ?
                        WHERE id = ?
                    """, (stage.value, now, error, episode_id))
                else:
                    conn.execute("""
                        UPDATE episodes
                        SET stage = ?, updated_at = ?
                        WHERE id = ?
                    """, (stage.value, now, episode_id))
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Database error updating episode stage: {e}")
            raise

        episode = self.get_episode(episode_id)
        if episode is None:
            raise LookupError(f"Episode {episode_id} not found")
        return episode

    def update_episode_fields(self, episode_id: str, **fields) -> Episode:
        """Persist stage outputs (script, audio path, ...) on the episode row"""
        unknown = set(fields) - EPISODE_MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update episode columns: {', '.join(sorted(unknown))}")
        if 'weather_is_stale' in fields:
            fields['weather_is_stale'] = int(bool(fields['weather_is_stale']))

        fields['updated_at'] = to_iso(utc_now())
        assignments = ', '.join(f"{name} = ?" for name in fields)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"UPDATE episodes SET {assignments} WHERE id = ?",
                    tuple(fields.values()) + (episode_id,)
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Database error updating episode: {e}")
            raise

        episode = self.get_episode(episode_id)
        if episode is None:
            raise LookupError(f"Episode {episode_id} not found")
        return episode

    def list_episodes(self, limit: int = 10) -> List[Episode]:
        """Most recent episodes by broadcast date"""
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT * FROM episodes ORDER BY broadcast_date DESC LIMIT ?", (limit,)
            )
            rows = self._rows_to_dicts(cursor, cursor.fetchall())
        return [Episode.from_dict(row) for row in rows]

    # ===== Weather snapshots =====

    def save_weather_snapshot(self, snapshot: WeatherSnapshot) -> str:
        """Append a weather snapshot"""
        with self._connect() as conn:
            conn.execute("""
                INSERT INTO weather_snapshots
                    (id, episode_id, location, discussion_raw, forecast_raw,
                     parsed_data, fetched_at, issued_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (snapshot.id, snapshot.episode_id, snapshot.location,
                  snapshot.discussion_raw, snapshot.forecast_raw,
                  snapshot.parsed_data, snapshot.fetched_at, snapshot.issued_at))
            conn.commit()
        return snapshot.id

    def get_latest_snapshot(self, location: str) -> Optional[WeatherSnapshot]:
        """Most recently fetched snapshot for a location, across all episodes"""
        with self._connect() as conn:
            cursor = conn.execute("""
                SELECT * FROM weather_snapshots
                WHERE location = ?
                ORDER BY fetched_at DESC, rowid DESC
                LIMIT 1
            """, (location,))
            rows = self._rows_to_dicts(cursor, cursor.fetchall())
        return WeatherSnapshot(**rows[0]) if rows else None

    def get_episode_snapshot(self, episode_id: str, location: str,
                             fetched_at: Optional[str] = None) -> Optional[WeatherSnapshot]:
        """Snapshot an episode was narrated from.

        Fresh fetches are tagged with the episode id; a stale fallback is
        matched by the fetch timestamp recorded on the episode.
        """
        with self._connect() as conn:
            cursor = conn.execute("""
                SELECT * FROM weather_snapshots
                WHERE episode_id = ? OR (location = ? AND fetched_at = ?)
                ORDER BY fetched_at DESC, rowid DESC
                LIMIT 1
            """, (episode_id, location, fetched_at))
            rows = self._rows_to_dicts(cursor, cursor.fetchall())
        return WeatherSnapshot(**rows[0]) if rows else None

    def count_snapshots(self, location: Optional[str] = None) -> int:
        with self._connect() as conn:
            if location:
                result = conn.execute(
                    "SELECT COUNT(*) FROM weather_snapshots WHERE location = ?", (location,)
                ).fetchone()
            else:
                result = conn.execute("SELECT COUNT(*) FROM weather_snapshots").fetchone()
        return result[0]

    # ===== Artifact cache =====

    def find_cache_entry(self, fingerprint: str, category: ImageCategory,
                         epoch: int) -> Optional[CacheEntry]:
        """Newest cache entry for the key; older duplicates are superseded"""
        with self._connect() as conn:
            cursor = conn.execute("""
                SELECT * FROM artifact_cache
                WHERE fingerprint = ? AND category = ? AND epoch = ?
                ORDER BY rowid DESC
                LIMIT 1
            """, (fingerprint, category.value, epoch))
            rows = self._rows_to_dicts(cursor, cursor.fetchall())
        return CacheEntry(**rows[0]) if rows else None

    def insert_cache_entry(self, entry: CacheEntry) -> str:
        """Add a cache entry; existing rows for the same key are never overwritten"""
        with self._connect() as conn:
            conn.execute("""
                INSERT INTO artifact_cache
                    (id, fingerprint, category, epoch, artifact_path, descriptor,
                     generator, created_at, last_used_at, use_count)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (entry.id, entry.fingerprint, entry.category.value, entry.epoch,
                  entry.artifact_path, entry.descriptor, entry.generator,
                  entry.created_at, entry.last_used_at, entry.use_count))
            conn.commit()
        return entry.id

    def touch_cache_entry(self, entry_id: str) -> None:
        """Record a cache hit"""
        with self._connect() as conn:
            conn.execute("""
                UPDATE artifact_cache
                SET use_count = COALESCE(use_count, 1) + 1, last_used_at = ?
                WHERE id = ?
            """, (to_iso(utc_now()), entry_id))
            conn.commit()

    def get_cache_stats(self) -> List[Dict[str, Any]]:
        """Entry counts and total uses per (category, epoch)"""
        with self._connect() as conn:
            cursor = conn.execute("""
                SELECT category, epoch, COUNT(*) AS entries, SUM(use_count) AS uses
                FROM artifact_cache
                GROUP BY category, epoch
                ORDER BY category, epoch
            """)
            return self._rows_to_dicts(cursor, cursor.fetchall())
