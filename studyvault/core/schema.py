"""
Sweep data model - repair actions, sweep records and registry entry types.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Category(str, Enum):
    """Which phase produced an action."""
    KEYS = "keys"
    STRUCTURE = "structure"
    STALE = "stale"
    ORPHAN = "orphan"
    CONFIG = "config"
    INTEGRITY = "integrity"


class Severity(str, Enum):
    INFO = "info"          # observation only, no mutation
    FIXED = "fixed"        # a mutation was applied
    WARNING = "warning"    # problem found, not auto-repaired
    ERROR = "error"        # unexpected failure


class ValueKind(str, Enum):
    """Expected JSON shape of a known key."""
    ARRAY = "array"
    OBJECT = "object"
    STRING = "string"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class KeySpec:
    kind: ValueKind
    default: str  # JSON literal written back on repair


@dataclass(frozen=True)
class BoundedSetting:
    """A JSON-encoded integer string that must stay within [minimum, maximum]."""
    key: str
    minimum: int
    maximum: int
    fallback: str
    label: str


@dataclass(frozen=True)
class ServiceCheck:
    """A remote dependency probed during the sweep."""
    function: str
    payload: Dict[str, Any]
    offline_key: str
    label: str


@dataclass
class RepairAction:
    """One observation or repair performed during a sweep."""
    id: str
    category: Category
    label: str
    detail: str
    severity: Severity
    before: Optional[str] = None
    after: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "category": self.category.value,
            "label": self.label,
            "detail": self.detail,
            "severity": self.severity.value,
        }
        if self.before is not None:
            data["before"] = self.before
        if self.after is not None:
            data["after"] = self.after
        return data


@dataclass
class SweepRecord:
    """Summary of one completed sweep, persisted in the bounded history."""
    timestamp: str
    fixed: int
    warnings: int
    score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "fixed": self.fixed,
            "warnings": self.warnings,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SweepRecord":
        # Records exported from the browser app name the timestamp "ts"
        timestamp = data["timestamp"] if "timestamp" in data else data["ts"]
        return cls(
            timestamp=str(timestamp),
            fixed=int(data["fixed"]),
            warnings=int(data["warnings"]),
            score=int(data["score"]),
        )


@dataclass
class SweepResult:
    """Everything a caller needs to render a sweep."""
    actions: List[RepairAction] = field(default_factory=list)
    record: Optional[SweepRecord] = None

    @property
    def score(self) -> int:
        return self.record.score if self.record else 0

    def counts(self) -> Dict[str, int]:
        """Number of actions per severity."""
        counts = {severity.value: 0 for severity in Severity}
        for action in self.actions:
            counts[action.severity.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actions": [action.to_dict() for action in self.actions],
            "record": self.record.to_dict() if self.record else None,
        }
