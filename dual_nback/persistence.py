from __future__ import annotations

import datetime as dt
import json
import os
import sqlite3
from pathlib import Path

from .config import Mode, NBackConfig
from .log import get_logger
from .results import SessionResult
from .stats import (
    RECENT_SESSIONS_CAPACITY,
    DayEntry,
    RecentSession,
    RecentSessions,
    StatValues,
    apply_session_result,
    recent_session_from_result,
    update_day_entry,
)

SCHEMA_VERSION = 1
DB_PATH_ENV = "NBACK_DB_PATH"

logger = get_logger(__name__)


def default_db_path() -> Path:
    explicit = os.environ.get(DB_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".dual_nback.sqlite3"


def open_db(path: Path | str) -> sqlite3.Connection:
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS setting (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS stats (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                current_level INTEGER NOT NULL,
                average_level_today REAL NOT NULL,
                sessions_today INTEGER NOT NULL,
                total_sessions INTEGER NOT NULL,
                last_session_date TEXT
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS day_entry (
                date TEXT PRIMARY KEY,
                average_level REAL NOT NULL,
                sessions_completed INTEGER NOT NULL,
                max_level INTEGER NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS recent_session (
                id INTEGER PRIMARY KEY,
                date TEXT NOT NULL,
                level INTEGER NOT NULL,
                percent_score INTEGER NOT NULL
            );
            """
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


def load_settings(conn: sqlite3.Connection) -> NBackConfig:
    """Load stored settings, writing defaults on first run or when invalid."""

    rows = conn.execute("SELECT key, value FROM setting").fetchall()
    if not rows:
        config = NBackConfig()
        save_settings(conn, config)
        logger.info("settings_initialized")
        return config

    raw: dict[str, object] = {}
    for key, value in rows:
        try:
            raw[str(key)] = json.loads(value)
        except json.JSONDecodeError:
            continue

    config = NBackConfig.from_dict(raw)
    try:
        config.validate()
    except ValueError as exc:
        logger.warning("settings_invalid", error=str(exc))
        config = NBackConfig()
        save_settings(conn, config)
        return config

    logger.info("settings_loaded")
    return config


def save_settings(conn: sqlite3.Connection, config: NBackConfig) -> None:
    with conn:
        for key, value in config.to_dict().items():
            conn.execute(
                "INSERT INTO setting(key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, json.dumps(value)),
            )


def load_stats(conn: sqlite3.Connection) -> StatValues:
    row = conn.execute(
        """
        SELECT current_level, average_level_today, sessions_today, total_sessions, last_session_date
        FROM stats WHERE id = 1
        """
    ).fetchone()
    if row is None:
        return StatValues()
    return StatValues(
        current_level=max(1, int(row[0])),
        average_level_today=float(row[1]),
        sessions_today=max(0, int(row[2])),
        total_sessions=max(0, int(row[3])),
        last_session_date=_parse_date(row[4]),
    )


def save_stats(conn: sqlite3.Connection, stats: StatValues) -> None:
    with conn:
        _write_stats(conn, stats)


def load_day_entries(conn: sqlite3.Connection) -> list[DayEntry]:
    out: list[DayEntry] = []
    rows = conn.execute(
        "SELECT date, average_level, sessions_completed, max_level FROM day_entry ORDER BY date"
    ).fetchall()
    for date_s, average_level, sessions_completed, max_level in rows:
        date = _parse_date(date_s)
        if date is None:
            continue
        out.append(
            DayEntry(
                date=date,
                average_level=float(average_level),
                sessions_completed=int(sessions_completed),
                max_level=int(max_level),
            )
        )
    return out


def load_recent_sessions(conn: sqlite3.Connection) -> RecentSessions:
    rows = conn.execute(
        "SELECT date, level, percent_score FROM recent_session ORDER BY id DESC LIMIT ?",
        (RECENT_SESSIONS_CAPACITY,),
    ).fetchall()
    sessions: list[RecentSession] = []
    for date_s, level, score in reversed(rows):
        date = _parse_date(date_s)
        if date is None:
            continue
        sessions.append(RecentSession(date=date, level=int(level), percent_score=int(score)))
    return RecentSessions(sessions)


def record_session(conn: sqlite3.Connection, result: SessionResult, *, today: dt.date) -> StatValues:
    """
    Persist one completed session in a single transaction:
      stats + day_entry + recent_session (trimmed to the buffer capacity)
    """
    stats = apply_session_result(load_stats(conn), result, today=today)
    # Manual sessions leave current_level alone, so log the level actually played.
    played_level = result.level_at_completion if result.mode is Mode.MANUAL else stats.current_level

    with conn:
        _write_stats(conn, stats)

        row = conn.execute(
            "SELECT average_level, sessions_completed, max_level FROM day_entry WHERE date = ?",
            (today.isoformat(),),
        ).fetchone()
        existing = (
            None
            if row is None
            else DayEntry(
                date=today,
                average_level=float(row[0]),
                sessions_completed=int(row[1]),
                max_level=int(row[2]),
            )
        )
        entry = update_day_entry(existing, today=today, level=played_level)
        conn.execute(
            """
            INSERT INTO day_entry(date, average_level, sessions_completed, max_level)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(date) DO UPDATE SET
                average_level = excluded.average_level,
                sessions_completed = excluded.sessions_completed,
                max_level = excluded.max_level
            """,
            (entry.date.isoformat(), entry.average_level, entry.sessions_completed, entry.max_level),
        )

        recent = recent_session_from_result(result, today=today, level=played_level)
        conn.execute(
            "INSERT INTO recent_session(date, level, percent_score) VALUES (?, ?, ?)",
            (recent.date.isoformat(), recent.level, recent.percent_score),
        )
        conn.execute(
            """
            DELETE FROM recent_session
            WHERE id NOT IN (SELECT id FROM recent_session ORDER BY id DESC LIMIT ?)
            """,
            (RECENT_SESSIONS_CAPACITY,),
        )

    logger.info(
        "session_recorded",
        date=today.isoformat(),
        current_level=stats.current_level,
        sessions_today=stats.sessions_today,
        total_sessions=stats.total_sessions,
    )
    return stats


def record_session_result(*, db_path: Path, result: SessionResult, today: dt.date | None = None) -> StatValues:
    conn = open_db(db_path)
    try:
        return record_session(conn, result, today=today or dt.date.today())
    finally:
        conn.close()


def _write_stats(conn: sqlite3.Connection, stats: StatValues) -> None:
    last = None if stats.last_session_date is None else stats.last_session_date.isoformat()
    conn.execute(
        """
        INSERT INTO stats(id, current_level, average_level_today, sessions_today, total_sessions, last_session_date)
        VALUES (1, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            current_level = excluded.current_level,
            average_level_today = excluded.average_level_today,
            sessions_today = excluded.sessions_today,
            total_sessions = excluded.total_sessions,
            last_session_date = excluded.last_session_date
        """,
        (
            int(stats.current_level),
            float(stats.average_level_today),
            int(stats.sessions_today),
            int(stats.total_sessions),
            last,
        ),
    )


def _parse_date(value: object) -> dt.date | None:
    if value is None:
        return None
    try:
        return dt.date.fromisoformat(str(value))
    except ValueError:
        return None
