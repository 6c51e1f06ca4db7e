"""
Schema registry - static tables describing the keys the application owns.

Loaded once at import time and never mutated during a sweep.
"""

from typing import Any, Dict, List, Tuple

from .schema import BoundedSetting, KeySpec, ServiceCheck, ValueKind


# Legacy key -> current key. Pairs are applied independently, in order.
KEY_MIGRATIONS: List[Tuple[str, str]] = [
    ("notebook-entries", "study-notes"),
    ("simulado-stats", "simulado-results"),
    ("flashcard-decks", "flashcards"),
    ("study-goals", "weekly-goals"),
]

KNOWN_KEYS: Dict[str, KeySpec] = {
    "kanban-tasks": KeySpec(ValueKind.ARRAY, "[]"),
    "study-sessions": KeySpec(ValueKind.ARRAY, "[]"),
    "study-notes": KeySpec(ValueKind.ARRAY, "[]"),
    "flashcards": KeySpec(ValueKind.ARRAY, "[]"),
    "agenda-events": KeySpec(ValueKind.ARRAY, "[]"),
    "weekly-goals": KeySpec(ValueKind.ARRAY, "[]"),
    "simulado-results": KeySpec(ValueKind.ARRAY, "[]"),
    "pdf-knowledge": KeySpec(ValueKind.ARRAY, "[]"),
    "mentor-memories": KeySpec(ValueKind.ARRAY, "[]"),
    "mentor-config": KeySpec(
        ValueKind.OBJECT, '{"userName":"Estudante","voiceSpeed":1,"voicePersona":"formal"}'
    ),
    "language-progress": KeySpec(ValueKind.OBJECT, "{}"),
    "mentor-persona": KeySpec(ValueKind.STRING, '"descolado"'),
    "mentor-voice-enabled": KeySpec(ValueKind.BOOLEAN, "true"),
    "mentor-speed": KeySpec(ValueKind.STRING, '"1"'),
    "dark-mode": KeySpec(ValueKind.BOOLEAN, "false"),
    "notifications-enabled": KeySpec(ValueKind.BOOLEAN, "true"),
    "auto-save": KeySpec(ValueKind.BOOLEAN, "true"),
    "pomodoro-work": KeySpec(ValueKind.STRING, '"25"'),
    "pomodoro-break": KeySpec(ValueKind.STRING, '"5"'),
}

# Any key starting with one of these is recognized, even if not in KNOWN_KEYS.
# "sweep" covers the engine's own history key.
KNOWN_PREFIXES: List[str] = [
    "kanban", "study", "flashcard", "mentor", "pomodoro", "language",
    "gamification", "dark-mode", "notifications", "auto-save", "professor",
    "backup", "last-backup", "translation", "simulado", "plano-estudos",
    "weekly", "system-last", "maintenance", "pdf-knowledge", "agenda",
    "last-view", "sb-", "chat-history", "hasGreeted", "sweep",
]

# Keys of permanently removed features.
STALE_KEYS: List[str] = [
    "provas-enem", "enem-provas", "enem-gabaritos", "provas-data",
    "enem-results-2024", "enem-results-2025",
]

# Array-of-record keys scanned for duplicate ids.
DEDUP_KEYS: List[str] = [
    "kanban-tasks", "study-sessions", "study-notes", "flashcards",
    "agenda-events", "weekly-goals", "simulado-results", "pdf-knowledge",
]

MENTOR_CONFIG_KEY = "mentor-config"

# field -> (expected type, default)
MENTOR_CONFIG_DEFAULTS: Dict[str, Tuple[str, Any]] = {
    "userName": ("string", "Estudante"),
    "voiceSpeed": ("number", 1),
    "voicePersona": ("string", "formal"),
}

BOUNDED_SETTINGS: List[BoundedSetting] = [
    BoundedSetting("pomodoro-work", 1, 120, '"25"', "Pomodoro focus duration"),
    BoundedSetting("pomodoro-break", 1, 60, '"5"', "Pomodoro break duration"),
]

SERVICE_CHECKS: List[ServiceCheck] = [
    ServiceCheck(
        function="enem-simulado",
        payload={"type": "custom-topics", "topics": "ping", "questionCount": 1, "area": "misto"},
        offline_key="simulado-offline-mode",
        label="Practice exam AI (enem-simulado)",
    ),
    ServiceCheck(
        function="enem-tutor",
        payload={
            "messages": [{"role": "user", "content": "ping"}],
            "memories": [],
            "voicePersona": "formal",
            "userName": "test",
        },
        offline_key="mentor-offline-mode",
        label="Mentor AI (enem-tutor)",
    ),
    ServiceCheck(
        function="language-classroom",
        payload={"action": "get-curriculum"},
        offline_key="language-offline-mode",
        label="Virtual language teacher (language-classroom)",
    ),
]

# Engine bookkeeping keys (recognized via KNOWN_PREFIXES)
HISTORY_KEY = "sweep-history"
LAST_SWEEP_KEY = "maintenance-last-sweep"

ORPHAN_PREVIEW_COUNT = 6


def describe_json_type(value: Any) -> str:
    """Name a parsed JSON value's type the way the audit trail reports it."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _is_array(value: Any) -> bool:
    return isinstance(value, list)


def _is_object(value: Any) -> bool:
    return isinstance(value, dict)


def _any_parsed(value: Any) -> bool:
    # string and boolean keys only need to parse
    return True


_KIND_VALIDATORS = {
    ValueKind.ARRAY: _is_array,
    ValueKind.OBJECT: _is_object,
    ValueKind.STRING: _any_parsed,
    ValueKind.BOOLEAN: _any_parsed,
}


def matches_kind(kind: ValueKind, value: Any) -> bool:
    """Check a parsed JSON value against the expected kind."""
    return _KIND_VALIDATORS[kind](value)


def is_recognized(key: str) -> bool:
    """A key is recognized if it is known or starts with a known prefix."""
    if key in KNOWN_KEYS:
        return True
    return any(key.startswith(prefix) for prefix in KNOWN_PREFIXES)
