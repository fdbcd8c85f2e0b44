"""Field-level normalization for raw backend payloads.

Backends omit fields at will, send numbers as strings and use -1 for "unknown".
These helpers resolve that ambiguity once so the merge engine never has to guess.
None stands for "unknown" throughout.
"""

from __future__ import annotations

import math
import threading
from typing import Any, Iterable, List, Mapping, Optional

from loguru import logger

TRUTHY_STRINGS = ("1", "true", "yes", "y", "on")
# qBittorrent reports "infinite" ETA as 100 days.
INFINITE_ETA = 8640000

_warned_keys = set()
_warned_lock = threading.Lock()


def safe_num(raw: Any, fallback: Any = 0) -> Any:
    """Return a finite int/float parsed from ``raw`` or ``fallback``."""
    if isinstance(raw, bool) or raw is None:
        return fallback
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return raw if math.isfinite(raw) else fallback
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8", "ignore") if isinstance(raw, bytes) else raw
        text = text.strip()
        if not text:
            return fallback
        try:
            return int(text)
        except ValueError:
            pass
        try:
            value = float(text)
        except ValueError:
            return fallback
        return value if math.isfinite(value) else fallback
    return fallback


def safe_bool(raw: Any) -> bool:
    if raw is True:
        return True
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return raw == 1
    if isinstance(raw, str):
        return raw.strip().lower() in TRUTHY_STRINGS
    return False


def resolve_swarm_count(raw: Any) -> Optional[int]:
    # -1 is the backends' "unknown"; other negatives are garbage. Both become None.
    value = safe_num(raw, None)
    if value is None or value < 0:
        return None
    return int(value)


def resolve_eta(raw: Any) -> Optional[int]:
    """Seconds remaining, -1 for unbounded. None when ``raw`` is not a number."""
    value = safe_num(raw, None)
    if value is None:
        return None
    if value < 0 or value >= INFINITE_ETA:
        return -1
    return int(value)


def has_key(payload: Any, key: str) -> bool:
    """Presence test used by every merge: the value itself is irrelevant."""
    return isinstance(payload, Mapping) and key in payload


def pick_best_available(total: Optional[int], connected: Optional[int], legacy_fallback: Optional[int] = None) -> int:
    if total is not None:
        return total
    if connected is not None:
        return connected
    if legacy_fallback is not None:
        return legacy_fallback
    return 0


def pick(obj: Any, *keys: str, default: Any = None) -> Any:
    """First non-None value among ``keys`` (handles snake/camel/kebab spellings)."""
    if not isinstance(obj, Mapping):
        return default
    for key in keys:
        value = obj.get(key)
        if value is not None:
            return value
    return default


def split_tags(raw: Any) -> Optional[List[str]]:
    """Comma string or list of labels -> clean list. None when unusable."""
    if raw is None:
        return None
    if isinstance(raw, str):
        items: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = raw
    else:
        return None
    out = []
    for item in items:
        if item is None:
            continue
        text = str(item).strip()
        if text and text not in out:
            out.append(text)
    return out


def clamp_progress(value: float) -> float:
    if value < 0:
        return 0.0
    if value > 1:
        return 1.0
    return float(value)


def warn_once(key: str, message: str, *args: Any) -> None:
    with _warned_lock:
        if key in _warned_keys:
            return
        _warned_keys.add(key)
    logger.warning("[Adapter Warning] " + message, *args)


def reset_warnings() -> None:
    with _warned_lock:
        _warned_keys.clear()
