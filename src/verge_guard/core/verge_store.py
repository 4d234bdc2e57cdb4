"""Persisted verge settings with a locally cached view.

The store keeps two dictionaries:

- ``committed``: what is on disk (``verge.json``), changed only by ``patch``.
- ``view``: what the UI renders, changed by ``mutate``. It may run ahead of
  ``committed`` while a guarded toggle is waiting for its side effect.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

from verge_guard.core.errors import PersistenceFailure
from verge_guard.core.settings_model import SYSTEM_FIELDS, default_verge
from verge_guard.core.storage import atomic_write_json, get_config_dir

logger = logging.getLogger(__name__)

VERGE_FILE = "verge.json"

_BOOL_KEYS = frozenset(field.key for field in SYSTEM_FIELDS)
_STR_KEYS = frozenset({"clash_core"})

ViewListener = Callable[[dict[str, Any]], None]


@runtime_checkable
class ConfigStore(Protocol):
    """What the guarded toggles need from the settings store."""

    def get(self, key: str, default: Any = False) -> Any:
        """Current view value."""

    def committed(self, key: str, default: Any = False) -> Any:
        """Last persisted value."""

    def mutate(self, partial: Mapping[str, Any], revalidate: bool = False) -> None:
        """Update the local view."""

    async def patch(self, partial: Mapping[str, Any]) -> None:
        """Persist ``partial``; raises PersistenceFailure."""


def _sanitize(partial: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in partial.items():
        if key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise PersistenceFailure(
                    f"Invalid value for {key}: {value!r}",
                    user_message=f"Invalid value for {key}.",
                )
            out[key] = value
        elif key in _STR_KEYS:
            text = str(value or "").strip()
            if not text:
                raise PersistenceFailure(f"Empty value for {key}", user_message=f"{key} must not be empty.")
            out[key] = text
        else:
            raise PersistenceFailure(f"Unknown setting: {key}", user_message=f"Unknown setting: {key}.")
    return out


def _coerce_loaded(payload: Mapping[str, Any]) -> dict[str, Any]:
    data = default_verge()
    for key in _BOOL_KEYS:
        value = payload.get(key)
        if isinstance(value, bool):
            data[key] = value
    for key in _STR_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            data[key] = value.strip()
    return data


class VergeStore:
    def __init__(self, path: Path | None = None) -> None:
        self.path = path or (get_config_dir() / VERGE_FILE)
        self._committed: dict[str, Any] = default_verge()
        self._view: dict[str, Any] = dict(self._committed)
        self._listeners: list[ViewListener] = []
        self._write_lock = asyncio.Lock()
        self.last_load_error: str | None = None

    @property
    def verge(self) -> dict[str, Any]:
        return dict(self._view)

    @property
    def persisted(self) -> dict[str, Any]:
        return dict(self._committed)

    def get(self, key: str, default: Any = False) -> Any:
        return self._view.get(key, default)

    def committed(self, key: str, default: Any = False) -> Any:
        return self._committed.get(key, default)

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def load(self) -> None:
        self.last_load_error = None
        if not self.path.exists():
            self._reset(default_verge())
            return

        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except json.JSONDecodeError as exc:
            backup_path = self.path.with_suffix(".json.bak")
            try:
                if backup_path.exists():
                    backup_path.unlink()
                os.replace(self.path, backup_path)
                backup_note = f" Backed up as {backup_path.name}."
            except OSError:
                logger.exception("Failed to back up corrupted settings file %s", self.path)
                backup_note = " Failed to create backup file."
            self.last_load_error = (
                f"Saved settings file is corrupted ({exc}). Started with defaults.{backup_note}"
            )
            logger.warning(self.last_load_error)
            self._reset(default_verge())
            return

        if not isinstance(payload, dict):
            self.last_load_error = "Saved settings file format is invalid. Started with defaults."
            logger.warning(self.last_load_error)
            self._reset(default_verge())
            return

        self._reset(_coerce_loaded(payload))

    def mutate(self, partial: Mapping[str, Any], revalidate: bool = False) -> None:
        """Update the view. With ``revalidate`` the view is re-read from disk afterwards."""
        self._view.update(partial)
        if revalidate:
            self.load()
            return
        self._notify()

    async def patch(self, partial: Mapping[str, Any]) -> None:
        sanitized = _sanitize(partial)
        async with self._write_lock:
            candidate = {**self._committed, **sanitized}
            try:
                await asyncio.to_thread(atomic_write_json, self.path, candidate)
            except OSError as exc:
                logger.exception("Failed to write settings to %s", self.path)
                raise PersistenceFailure(
                    f"Failed to write {self.path}: {exc}",
                    user_message=f"Failed to save settings: {exc.strerror or exc}",
                ) from exc
            self._committed = candidate
        logger.info("Saved settings patch %s", sanitized)

    def _reset(self, data: dict[str, Any]) -> None:
        self._committed = data
        self._view = dict(data)
        self._notify()

    def _notify(self) -> None:
        snapshot = dict(self._view)
        for listener in list(self._listeners):
            listener(snapshot)
