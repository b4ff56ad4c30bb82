"""Typed environment lookups layered over an optional ``.env`` file.

The process environment always wins; file values only fill the gaps.
Nothing is written back into ``os.environ``.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Tuple, TypeVar

DEFAULT_ENV_FILE = ".env"

_TRUTHY = {"1", "true", "yes", "y", "on"}
_FALSY = {"0", "false", "no", "n", "off"}

T = TypeVar("T")


def _parse_line(raw: str) -> Optional[Tuple[str, str]]:
    line = raw.strip()
    if line.lower().startswith("export "):
        line = line[7:].lstrip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key or key.startswith("#"):
        return None
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return key, value[1:-1]
    # unquoted values may carry a trailing " # comment"
    return key, value.split(" #", 1)[0].rstrip()


class EnvSettings:
    """Name -> typed value, with a default for anything missing or malformed."""

    def __init__(self, file_values: Optional[Mapping[str, str]] = None,
                 environ: Optional[Mapping[str, str]] = None) -> None:
        self._file: Dict[str, str] = dict(file_values or {})
        self._environ = os.environ if environ is None else environ

    @classmethod
    def load(cls, path: str, environ: Optional[Mapping[str, str]] = None) -> "EnvSettings":
        """Read KEY=VALUE lines from *path*; a missing file just means no file layer."""
        target = Path(path)
        values: Dict[str, str] = {}
        if target.is_file():
            for raw in target.read_text(encoding="utf-8").splitlines():
                pair = _parse_line(raw)
                if pair is not None:
                    values[pair[0]] = pair[1]
        return cls(values, environ)

    @property
    def file_values(self) -> Dict[str, str]:
        return dict(self._file)

    def raw(self, name: str) -> Optional[str]:
        for layer in (self._environ, self._file):
            value = layer.get(name)
            if value is not None and value.strip():
                return value.strip()
        return None

    def _typed(self, name: str, default: T, cast: Callable[[str], T]) -> T:
        text = self.raw(name)
        if text is None:
            return default
        try:
            return cast(text)
        except ValueError:
            return default

    def get_str(self, name: str, default: Optional[str]) -> Optional[str]:
        text = self.raw(name)
        return default if text is None else text

    def get_int(self, name: str, default: int) -> int:
        return self._typed(name, int(default), int)

    def get_float(self, name: str, default: float) -> float:
        return self._typed(name, float(default), float)

    def seconds_from_ms(self, name: str, default_s: float) -> float:
        """Intervals are documented in milliseconds; config holds seconds."""
        return self.get_float(name, default_s * 1000.0) / 1000.0

    def get_bool(self, name: str, default: bool) -> bool:
        text = self.raw(name)
        if text is None:
            return bool(default)
        lowered = text.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        return bool(default)
