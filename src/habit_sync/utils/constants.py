"""Application-wide constants."""

APP_NAME = "Habit-Sync"
APP_VERSION = "1.0.0"
APP_ORGANIZATION = "Habit-Sync"

# ── Entity types ─────────────────────────────────────────────────
ENTITY_CALENDARS = "calendars"
ENTITY_HABITS = "habits"
ENTITY_COMPLETIONS = "completions"
ENTITY_ACTIVITY = "activity_history"
ENTITY_PROFILE = "user_profile"

# Remote RPC namespaces (camelCase on the wire)
REMOTE_ENTITY_NAMES = {
    ENTITY_CALENDARS: "calendars",
    ENTITY_HABITS: "habits",
    ENTITY_COMPLETIONS: "completions",
    ENTITY_ACTIVITY: "activityHistory",
    ENTITY_PROFILE: "profile",
}

HABIT_TYPES = ["positive", "negative"]

# ── Calendar colors ──────────────────────────────────────────────
ALLOWED_CALENDAR_COLORS = [
    "lime",
    "green",
    "emerald",
    "teal",
    "cyan",
    "sky",
    "blue",
    "indigo",
    "violet",
    "purple",
    "fuchsia",
    "pink",
    "rose",
    "red",
    "orange",
    "amber",
    "yellow",
]
DEFAULT_CALENDAR_COLOR = "indigo"

# ── Remote write limits ──────────────────────────────────────────
RATE_LIMIT_CREATES = 60
RATE_LIMIT_WINDOW_SECONDS = 60

# Sync history entries kept in memory for diagnostics
SYNC_HISTORY_LIMIT = 50
