"""Database schema definition and initialization."""

SCHEMA_VERSION = 1

# Each statement is a separate string to avoid executescript issues
_SCHEMA_STATEMENTS = [
    """CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # Calendars: organizational containers for habits
    """CREATE TABLE IF NOT EXISTS calendars (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        local_uuid TEXT NOT NULL UNIQUE,
        owner_principal TEXT,
        name TEXT NOT NULL,
        color_theme TEXT NOT NULL DEFAULT 'indigo',
        position INTEGER NOT NULL DEFAULT 0,
        is_enabled INTEGER NOT NULL DEFAULT 1,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )""",

    # Habits reference their calendar by correlation key, not by row id
    """CREATE TABLE IF NOT EXISTS habits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        local_uuid TEXT NOT NULL UNIQUE,
        owner_principal TEXT,
        calendar_uuid TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        habit_type TEXT NOT NULL DEFAULT 'positive'
            CHECK (habit_type IN ('positive', 'negative')),
        timer_enabled INTEGER NOT NULL DEFAULT 0,
        target_duration_seconds INTEGER,
        points_value INTEGER DEFAULT 0,
        position INTEGER NOT NULL DEFAULT 0,
        is_enabled INTEGER NOT NULL DEFAULT 1,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )""",

    """CREATE TABLE IF NOT EXISTS completions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        local_uuid TEXT NOT NULL UNIQUE,
        owner_principal TEXT,
        habit_uuid TEXT NOT NULL,
        completed_at INTEGER NOT NULL,
        client_updated_at INTEGER NOT NULL
    )""",

    # One row per (owner, local calendar day)
    """CREATE TABLE IF NOT EXISTS activity_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        local_uuid TEXT NOT NULL UNIQUE,
        owner_principal TEXT,
        date TEXT NOT NULL,
        opened_at INTEGER NOT NULL,
        client_updated_at INTEGER NOT NULL
    )""",

    # Singleton per install
    """CREATE TABLE IF NOT EXISTS user_profile (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        owner_principal TEXT,
        first_opened_at INTEGER,
        synced_principal TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )""",

    # Watermarks, one per (entity type, principal)
    """CREATE TABLE IF NOT EXISTS sync_metadata (
        entity_type TEXT NOT NULL,
        principal TEXT NOT NULL,
        last_successful_sync_at INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (entity_type, principal)
    )""",

    """CREATE TABLE IF NOT EXISTS deletion_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_type TEXT NOT NULL,
        local_uuid TEXT NOT NULL,
        principal TEXT,
        queued_at INTEGER NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        UNIQUE(entity_type, local_uuid)
    )""",

    """CREATE TABLE IF NOT EXISTS tombstones (
        entity_type TEXT NOT NULL,
        local_uuid TEXT NOT NULL,
        deleted_at INTEGER NOT NULL,
        PRIMARY KEY (entity_type, local_uuid)
    )""",

    # Indexes
    "CREATE INDEX IF NOT EXISTS idx_calendars_updated ON calendars(updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_calendars_owner ON calendars(owner_principal, position)",
    "CREATE INDEX IF NOT EXISTS idx_habits_updated ON habits(updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_habits_calendar ON habits(calendar_uuid, position)",
    "CREATE INDEX IF NOT EXISTS idx_completions_updated ON completions(client_updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_completions_habit ON completions(habit_uuid, completed_at)",
    "CREATE INDEX IF NOT EXISTS idx_activity_updated ON activity_history(client_updated_at)",
    # NULL owners compare equal here, unlike a plain UNIQUE(owner, date)
    """CREATE UNIQUE INDEX IF NOT EXISTS idx_activity_owner_date
        ON activity_history(COALESCE(owner_principal, ''), date)""",
    "CREATE INDEX IF NOT EXISTS idx_tombstones_deleted ON tombstones(entity_type, deleted_at)",
    "CREATE INDEX IF NOT EXISTS idx_deletion_queue_principal ON deletion_queue(principal, queued_at)",

    f"INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION})",
]


def _get_schema_version(conn) -> int:
    """Get the current schema version, or 0 if no schema exists."""
    try:
        row = conn.execute(
            "SELECT MAX(version) as v FROM schema_version"
        ).fetchone()
        return row["v"] if row and row["v"] else 0
    except Exception:
        return 0


def initialize_database(db_connection):
    """Create all tables and indexes on a fresh database.

    Later schema versions add their upgrade steps here, keyed on the
    version recorded in ``schema_version``.
    """
    with db_connection.get_connection() as conn:
        conn.execute("PRAGMA journal_mode = WAL")

        if _get_schema_version(conn) == 0:
            for stmt in _SCHEMA_STATEMENTS:
                conn.execute(stmt)
