"""
Sweep phases - key migration, structural repair, stale cleanup, config repair,
duplicate elimination, orphan removal and storage accounting.

Each phase is a generator over the store. It yields one RepairAction right after
every mutation it performs, so actions already yielded survive a later failure
inside the same phase.
"""

import json
import math
import re
from typing import Any, Iterator, List, Optional

from .config import STORAGE_QUOTA_BYTES, STORAGE_WARNING_PCT
from .registry import (
    BOUNDED_SETTINGS,
    DEDUP_KEYS,
    KEY_MIGRATIONS,
    KNOWN_KEYS,
    MENTOR_CONFIG_DEFAULTS,
    MENTOR_CONFIG_KEY,
    ORPHAN_PREVIEW_COUNT,
    STALE_KEYS,
    describe_json_type,
    is_recognized,
    matches_kind,
)
from .schema import Category, RepairAction, Severity
from .store import KeyValueStore
from util.logging import audit_event

_MISSING = object()
_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")


def _read(store: KeyValueStore, key: str) -> Optional[str]:
    """Read a key, treating an empty value as absent."""
    raw = store.get(key)
    return raw if raw else None


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def _finite_float(text: str) -> Optional[float]:
    # Overflowing literals such as 1e999 serialize back as null
    value = float(text)
    return value if math.isfinite(value) else None


def _parse(raw: str) -> Any:
    """Parse strict JSON, returning _MISSING when the text is not valid JSON."""
    try:
        return json.loads(raw, parse_constant=_reject_constant, parse_float=_finite_float)
    except (ValueError, RecursionError):
        return _MISSING


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, allow_nan=False, separators=(",", ":"))


def _record_id(item: Any) -> Any:
    """Return a record's id, or None when it has no usable one."""
    if not isinstance(item, dict):
        return None
    value = item.get("id")
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    return value if value else None


def _parse_int_prefix(value: Any) -> Optional[int]:
    """Leading integer of a setting's textual form ("25", "25min", 25.7 all give 25)."""
    if isinstance(value, bool) or value is None:
        return None
    match = _INT_PREFIX.match(str(value))
    return int(match.group(1)) if match else None


def migrate_keys(store: KeyValueStore) -> Iterator[RepairAction]:
    """Move legacy keys to their current names, merging array records by id."""
    for old_key, new_key in KEY_MIGRATIONS:
        old_raw = _read(store, old_key)
        new_raw = _read(store, new_key)

        if old_raw is None:
            continue

        if new_raw is None:
            store.set(new_key, old_raw)
            store.delete(old_key)
            yield RepairAction(
                id=f"migrate-{old_key}",
                category=Category.KEYS,
                label=f"Key migrated: {old_key}",
                detail=f'Data moved from "{old_key}" to "{new_key}"',
                severity=Severity.FIXED,
                before=old_key,
                after=new_key,
            )
            continue

        old_parsed = _parse(old_raw)
        new_parsed = _parse(new_raw)
        if isinstance(old_parsed, list) and isinstance(new_parsed, list):
            existing_ids = {_record_id(item) for item in new_parsed} - {None}
            unique = [
                item for item in old_parsed
                if _record_id(item) is None or _record_id(item) not in existing_ids
            ]
            if unique:
                store.set(new_key, _dump(new_parsed + unique))
                yield RepairAction(
                    id=f"merge-{old_key}",
                    category=Category.KEYS,
                    label=f"Data merged: {old_key}",
                    detail=f'{len(unique)} unique item(s) merged into "{new_key}"',
                    severity=Severity.FIXED,
                    before=old_key,
                    after=new_key,
                )
        else:
            # Legacy data that is not a pair of arrays is dropped unmerged.
            yield RepairAction(
                id=f"merge-skipped-{old_key}",
                category=Category.KEYS,
                label=f"Merge skipped: {old_key}",
                detail=(
                    f'"{old_key}" and "{new_key}" are not both JSON arrays '
                    f"({_describe_raw(old_parsed)} / {_describe_raw(new_parsed)}); "
                    f'legacy data in "{old_key}" was discarded'
                ),
                severity=Severity.WARNING,
                before=old_key,
                after=new_key,
            )

        store.delete(old_key)
        yield RepairAction(
            id=f"remove-old-{old_key}",
            category=Category.KEYS,
            label=f"Legacy key removed: {old_key}",
            detail=f'Obsolete key "{old_key}" cleaned up',
            severity=Severity.FIXED,
            before=old_key,
        )


def _describe_raw(parsed: Any) -> str:
    return "invalid JSON" if parsed is _MISSING else describe_json_type(parsed)


def validate_structures(store: KeyValueStore) -> Iterator[RepairAction]:
    """Restore known keys that hold corrupt JSON or the wrong shape."""
    for key, spec in KNOWN_KEYS.items():
        raw = _read(store, key)
        if raw is None:
            continue

        parsed = _parse(raw)
        if parsed is _MISSING:
            store.set(key, spec.default)
            yield RepairAction(
                id=f"corrupt-{key}",
                category=Category.STRUCTURE,
                label=f"Corrupted JSON: {key}",
                detail=f'"{key}" held corrupted data and was restored to its default.',
                severity=Severity.FIXED,
            )
        elif not matches_kind(spec.kind, parsed):
            store.set(key, spec.default)
            yield RepairAction(
                id=f"struct-{key}",
                category=Category.STRUCTURE,
                label=f"Type corrected: {key}",
                detail=(
                    f"Expected: {spec.kind.value}, found: {describe_json_type(parsed)}. "
                    "Restored to default."
                ),
                severity=Severity.FIXED,
            )


def cleanup_stale_keys(store: KeyValueStore) -> Iterator[RepairAction]:
    """Delete keys that belong to removed features."""
    for stale_key in STALE_KEYS:
        if _read(store, stale_key) is None:
            continue
        store.delete(stale_key)
        yield RepairAction(
            id=f"stale-{stale_key}",
            category=Category.STALE,
            label=f"Removed: {stale_key}",
            detail="Data from a removed module was cleaned up.",
            severity=Severity.FIXED,
        )


def _field_ok(expected: str, value: Any) -> bool:
    # Falsy values (empty name, zero speed) count as missing
    if not value:
        return False
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return isinstance(value, str)


def repair_config(store: KeyValueStore) -> Iterator[RepairAction]:
    """Fill missing mentor config fields and reset out-of-range bounded settings."""
    raw = _read(store, MENTOR_CONFIG_KEY)
    config = _parse(raw) if raw is not None else {}
    if not isinstance(config, dict):
        config = {}

    restored: List[str] = []
    for field_name, (expected, default) in MENTOR_CONFIG_DEFAULTS.items():
        if not _field_ok(expected, config.get(field_name)):
            config[field_name] = default
            restored.append(field_name)

    if restored:
        store.set(MENTOR_CONFIG_KEY, _dump(config))
        yield RepairAction(
            id="config-mentor",
            category=Category.CONFIG,
            label="Mentor configuration repaired",
            detail=f"Missing fields restored ({', '.join(restored)}).",
            severity=Severity.FIXED,
        )

    for setting in BOUNDED_SETTINGS:
        raw = _read(store, setting.key)
        if raw is None:
            continue

        parsed = _parse(raw)
        value = None if parsed is _MISSING else _parse_int_prefix(parsed)
        if value is not None and setting.minimum <= value <= setting.maximum:
            continue

        store.set(setting.key, setting.fallback)
        reason = "Unreadable value" if parsed is _MISSING else f"Invalid value {raw}"
        yield RepairAction(
            id=f"config-{setting.key}",
            category=Category.CONFIG,
            label=f"{setting.label} corrected",
            detail=(
                f"{reason} replaced by {json.loads(setting.fallback)} min "
                f"(valid range {setting.minimum}-{setting.maximum})."
            ),
            severity=Severity.FIXED,
        )


def remove_duplicates(store: KeyValueStore) -> Iterator[RepairAction]:
    """Drop records whose id was already seen, keeping the first occurrence."""
    for key in DEDUP_KEYS:
        raw = _read(store, key)
        if raw is None:
            continue

        records = _parse(raw)
        if not isinstance(records, list):
            continue

        seen = set()
        deduped = []
        for record in records:
            record_id = _record_id(record)
            if record_id is not None:
                if record_id in seen:
                    continue
                seen.add(record_id)
            deduped.append(record)

        removed = len(records) - len(deduped)
        if removed:
            store.set(key, _dump(deduped))
            yield RepairAction(
                id=f"dedup-{key}",
                category=Category.INTEGRITY,
                label=f"Duplicates removed: {key}",
                detail=f"{removed} duplicate entr{'y' if removed == 1 else 'ies'} eliminated.",
                severity=Severity.FIXED,
            )


def remove_orphans(store: KeyValueStore) -> Iterator[RepairAction]:
    """Delete every key that is neither known nor under a known prefix."""
    orphans = [key for key in store.keys() if not is_recognized(key)]
    if not orphans:
        return

    for key in orphans:
        store.delete(key)

    audit_event(
        event_type="sweep.orphans_removed",
        identifiers={"count": len(orphans)},
        payload={"keys": orphans[:ORPHAN_PREVIEW_COUNT]}
    )

    preview = ", ".join(orphans[:ORPHAN_PREVIEW_COUNT])
    extra = len(orphans) - ORPHAN_PREVIEW_COUNT
    if extra > 0:
        preview += f" (+{extra} more)"

    yield RepairAction(
        id="orphans-removed",
        category=Category.ORPHAN,
        label=f"{len(orphans)} orphan key(s) removed",
        detail=f"Removed: {preview}",
        severity=Severity.FIXED,
    )


def utf16_size(text: str) -> int:
    """Bytes a browser-style store charges for a string: 2 per UTF-16 code unit."""
    return len(text.encode("utf-16-le", "surrogatepass"))


def report_storage(store: KeyValueStore, quota_bytes: Optional[int] = None,
                   warning_pct: Optional[int] = None) -> Iterator[RepairAction]:
    """Summarize post-repair storage usage. Never mutates the store."""
    quota_bytes = quota_bytes or STORAGE_QUOTA_BYTES
    warning_pct = warning_pct or STORAGE_WARNING_PCT

    total_bytes = 0
    largest_key = ""
    largest_size = 0
    keys = store.keys()
    for key in keys:
        size = utf16_size(store.get(key) or "")
        total_bytes += size
        if size > largest_size:
            largest_size = size
            largest_key = key

    usage_pct = int(total_bytes / quota_bytes * 100 + 0.5)
    quota_mb = quota_bytes / 1024 / 1024

    yield RepairAction(
        id="storage-health",
        category=Category.INTEGRITY,
        label="Storage health",
        detail=(
            f"{total_bytes / 1024 / 1024:.2f}MB of ~{quota_mb:g}MB ({usage_pct}%) "
            f"- {len(keys)} keys - Largest: \"{largest_key}\" ({largest_size / 1024:.0f}KB)"
        ),
        severity=Severity.WARNING if usage_pct > warning_pct else Severity.INFO,
    )
