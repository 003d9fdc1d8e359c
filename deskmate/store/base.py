"""BaseStore: observable state container with a load/save lifecycle.

Every store owns exactly one pydantic state record.  Mutations go through
``_set_state()``, which diffs the update against the current record, swaps in
a new record, and notifies listeners: one ``StateChange`` for whole-state
subscribers, then one ``(new_value, old_value)`` call per changed field for
key subscribers.  Readers always receive deep copies.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

StateT = TypeVar("StateT", bound=BaseModel)
ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class StateChange(Generic[StateT]):
    """Payload delivered to whole-state subscribers."""

    new_state: StateT
    old_state: StateT
    changed_keys: tuple[str, ...]


StateListener = Callable[[StateChange[Any]], None]
KeyListener = Callable[[Any, Any], None]
Unsubscribe = Callable[[], None]


def coerce_model(model_cls: type[ModelT], raw: Mapping[str, Any], *, source: str) -> ModelT:
    """Build *model_cls* from a permissive mapping, field by field.

    Keys the model does not declare are ignored.  A value that fails
    validation is dropped so the field falls back to its default, and the
    dropped field names are logged.
    """
    known = {name: raw[name] for name in model_cls.model_fields if name in raw}
    try:
        return model_cls.model_validate(known)
    except ValidationError as exc:
        bad = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}
        logger.warning("%s: discarding invalid fields %s", source, sorted(bad))
        return model_cls.model_validate({k: v for k, v in known.items() if k not in bad})


class BaseStore(ABC, Generic[StateT]):
    """Observable, independently persisted slice of application state.

    Subclasses provide ``default_state()``, ``load()`` and ``save()``.
    ``load()`` must treat a missing document as "keep the defaults";
    ``save()`` must let I/O errors propagate to the caller.
    """

    def __init__(self) -> None:
        self._state: StateT = self.default_state()
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._tokens = itertools.count()
        self._listeners: dict[int, StateListener] = {}
        self._key_listeners: dict[str, dict[int, KeyListener]] = {}

    @property
    def name(self) -> str:
        return type(self).__name__

    # -- Contract for subclasses -----------------------------------------------

    @abstractmethod
    def default_state(self) -> StateT:
        """Return a fresh default state record."""

    @abstractmethod
    async def load(self) -> None:
        """Populate state from durable storage."""

    @abstractmethod
    async def save(self) -> None:
        """Durably persist the current state."""

    # -- Reads -----------------------------------------------------------------

    def get_state(self) -> StateT:
        """Return a deep copy of the current state."""
        return self._state.model_copy(deep=True)

    def get(self, key: str) -> Any:
        """Return a copy of a single state field."""
        self._check_key(key)
        return copy.deepcopy(getattr(self._state, key))

    def _check_key(self, key: str) -> None:
        if key not in type(self._state).model_fields:
            msg = f"{self.name} state has no field '{key}'"
            raise KeyError(msg)

    # -- Writes ----------------------------------------------------------------

    def _set_state(self, **updates: Any) -> tuple[str, ...]:
        """Apply *updates*, notify listeners, and return the changed keys.

        Values equal to the current ones are ignored; when nothing differs
        this is a no-op and no listener fires.
        """
        for key in updates:
            self._check_key(key)
        changed = tuple(k for k, v in updates.items() if getattr(self._state, k) != v)
        if not changed:
            return ()

        old = self._state
        self._state = old.model_copy(update={k: updates[k] for k in changed})
        self._notify(old, changed)
        return changed

    def _replace_state(self, state: StateT) -> tuple[str, ...]:
        return self._set_state(**{name: getattr(state, name) for name in type(state).model_fields})

    def _notify(self, old: StateT, changed: tuple[str, ...]) -> None:
        if self._listeners:
            change = StateChange(
                new_state=self.get_state(),
                old_state=old.model_copy(deep=True),
                changed_keys=changed,
            )
            for listener in list(self._listeners.values()):
                listener(change)

        for key in changed:
            listeners = self._key_listeners.get(key)
            if not listeners:
                continue
            for listener in list(listeners.values()):
                listener(copy.deepcopy(getattr(self._state, key)), copy.deepcopy(getattr(old, key)))

    # -- Subscriptions ---------------------------------------------------------

    def subscribe(self, listener: StateListener) -> Unsubscribe:
        """Call *listener* with a ``StateChange`` after every effective update."""
        token = next(self._tokens)
        self._listeners[token] = listener

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def subscribe_to_key(self, key: str, listener: KeyListener) -> Unsubscribe:
        """Call ``listener(new_value, old_value)`` whenever *key* changes."""
        self._check_key(key)
        token = next(self._tokens)
        self._key_listeners.setdefault(key, {})[token] = listener

        def unsubscribe() -> None:
            self._key_listeners.get(key, {}).pop(token, None)

        return unsubscribe

    # -- Lifecycle -------------------------------------------------------------

    async def initialize(self) -> None:
        """Load persisted state once.  Later calls are no-ops.

        If ``load()`` raises, the state is put back to what it was before the
        attempt and the error is re-raised; the store stays uninitialized so
        a later call retries.
        """
        async with self._init_lock:
            if self._initialized:
                return
            before = self._state
            try:
                await self.load()
            except Exception:
                logger.exception("Error initializing %s", self.name)
                self._replace_state(before)
                raise
            self._initialized = True
            logger.debug("%s initialized", self.name)

    def is_initialized(self) -> bool:
        return self._initialized

    def reset(self) -> None:
        """Replace the state with defaults (notifies, does not persist)."""
        self._replace_state(self.default_state())

    def destroy(self) -> None:
        """Drop every listener.  Does not persist."""
        self._listeners.clear()
        self._key_listeners.clear()
