"""TimedTransitionMap — an ordered time → value schedule.

Used for anything whose value changes at known instants: TLD launch phases,
renew price schedules. Nothing ever "applies" a transition; readers ask for
the value in effect at an explicit ``now``.

INVARIANT: keys are strictly increasing; ``get(t)`` returns the value of the
greatest key ≤ t.
"""

from __future__ import annotations

import bisect
from collections.abc import Callable, Iterable, Iterator, Mapping
from datetime import datetime
from typing import Any, Generic, TypeVar

from regctl.domain.errors import InvalidTransitionValue, NotInitialized, OrderViolation
from regctl.domain.times import START_OF_TIME, ensure_utc, from_iso, to_iso

V = TypeVar("V")

# (previous value or None for the first entry, candidate value) -> allowed?
TransitionValidator = Callable[[Any, Any], bool]


class _OrderedView(Generic[V]):
    """Restartable, finite view over a map's entries at the time it was taken."""

    def __init__(self, keys: list[datetime], values: list[V]) -> None:
        self._keys = keys
        self._values = values

    def __iter__(self) -> Iterator[tuple[datetime, V]]:
        return zip(self._keys, self._values, strict=True)

    def __len__(self) -> int:
        return len(self._keys)


class TimedTransitionMap(Generic[V]):
    """Ordered set of ``(time, value)`` entries with strictly increasing keys.

    Args:
        validator: Optional rule checked on every ``put``. Receives the
            predecessor value (``None`` for the first entry) and the new
            value; returning False raises :class:`InvalidTransitionValue`.
        require_start_of_time: When True, the first key must be
            ``START_OF_TIME`` so every instant has a defined value.
    """

    def __init__(
        self,
        *,
        validator: TransitionValidator | None = None,
        require_start_of_time: bool = True,
    ) -> None:
        self._keys: list[datetime] = []
        self._values: list[V] = []
        self._validator = validator
        self._require_start = require_start_of_time

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[datetime, V],
        *,
        validator: TransitionValidator | None = None,
        require_start_of_time: bool = True,
    ) -> TimedTransitionMap[V]:
        """Build a map from an unordered mapping, validating every edge in time order."""
        result: TimedTransitionMap[V] = cls(
            validator=validator, require_start_of_time=require_start_of_time
        )
        for when in sorted(mapping):
            result.put(when, mapping[when])
        return result

    @classmethod
    def from_dict(
        cls,
        raw: Mapping[str, Any],
        decode: Callable[[Any], V],
        *,
        validator: TransitionValidator | None = None,
    ) -> TimedTransitionMap[V]:
        """Inverse of :meth:`to_dict`."""
        return cls.from_mapping(
            {from_iso(k): decode(v) for k, v in raw.items()},
            validator=validator,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(self, time: datetime, value: V) -> None:
        """Append a transition at *time*.

        Raises:
            OrderViolation: *time* is not after the last key, the first key is
                not ``START_OF_TIME`` when required, or the validator rejects
                the edge from the previous value.
        """
        time = ensure_utc(time)
        if self._keys and time <= self._keys[-1]:
            msg = f"Transition at {to_iso(time)} is not after {to_iso(self._keys[-1])}"
            raise OrderViolation(msg, time=to_iso(time))
        if not self._keys and self._require_start and time != START_OF_TIME:
            msg = f"First transition must be at START_OF_TIME, got {to_iso(time)}"
            raise OrderViolation(msg, time=to_iso(time))
        previous = self._values[-1] if self._values else None
        if self._validator is not None and not self._validator(previous, value):
            msg = f"Transition {previous!r} -> {value!r} is not allowed"
            raise InvalidTransitionValue(msg, time=to_iso(time), value=str(value))
        self._keys.append(time)
        self._values.append(value)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, now: datetime) -> V:
        """Value in effect at *now* (greatest key ≤ now)."""
        now = ensure_utc(now)
        idx = bisect.bisect_right(self._keys, now) - 1
        if idx < 0:
            msg = f"No transition at or before {to_iso(now)}"
            raise NotInitialized(msg, time=to_iso(now))
        return self._values[idx]

    def to_ordered_sequence(self) -> Iterable[tuple[datetime, V]]:
        """Entries in time order. The returned view can be iterated repeatedly."""
        return _OrderedView(list(self._keys), list(self._values))

    def to_dict(self, encode: Callable[[V], Any] = str) -> dict[str, Any]:
        return {to_iso(k): encode(v) for k, v in self.to_ordered_sequence()}

    def __len__(self) -> int:
        return len(self._keys)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimedTransitionMap):
            return NotImplemented
        return self._keys == other._keys and self._values == other._values

    def __repr__(self) -> str:
        entries = ", ".join(f"{to_iso(k)}: {v!r}" for k, v in self.to_ordered_sequence())
        return f"TimedTransitionMap({{{entries}}})"


def graph_validator(transitions: Mapping[str, Iterable[str]], initial: str) -> TransitionValidator:
    """Validator enforcing a state graph: first value must be *initial*,
    every later value must be an allowed successor of its predecessor."""

    def _check(previous: Any, value: Any) -> bool:
        if previous is None:
            return str(value) == initial
        return str(value) in set(transitions.get(str(previous), ()))

    return _check
