"""Helpers shared by the stage executors."""

from typing import Any, Iterable, Optional

from callsense.storage import PipelineStore


def clamp(value: Any, low: float = 0.0, high: float = 1.0, default: float = 0.5) -> float:
    """Coerce to float and clamp into [low, high]; non-numbers become ``default``."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = default
    return max(low, min(high, number))


def first_present(data: dict[str, Any], *keys: str) -> Optional[Any]:
    """Value of the first key that is present and not None (compact or full key)."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def spec_parameter_ids(specs: Iterable) -> list[str]:
    """Parameter ids referenced by specs, in first-seen order.

    Specs reference parameters through ``config.parameterIds`` or
    ``config.parameters[].id``.
    """
    seen: dict[str, None] = {}
    for spec in specs:
        config = spec.config if isinstance(spec.config, dict) else {}
        ids = config.get("parameterIds")
        for pid in ids if isinstance(ids, list) else []:
            if isinstance(pid, str):
                seen.setdefault(pid, None)
        entries = config.get("parameters")
        for entry in entries if isinstance(entries, list) else []:
            if isinstance(entry, dict) and isinstance(entry.get("id"), str) and entry["id"]:
                seen.setdefault(entry["id"], None)
    return list(seen)


def load_spec_parameters(store: PipelineStore, specs: Iterable) -> list[tuple[str, str]]:
    """(parameter_id, name) pairs for parameters the specs reference and the catalogue knows."""
    ids = spec_parameter_ids(specs)
    catalogue = store.parameters(ids)
    return [(pid, catalogue[pid].name) for pid in ids if pid in catalogue]


def word_count(text: str) -> int:
    return len(text.split())
