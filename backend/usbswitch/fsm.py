"""Transition-validated state machine on top of ``transitions``.

The machine owns a fixed registry of state singletons keyed by their ``kind``.
A state decides which kinds may follow it; the machine refuses any other
transition and leaves the active state untouched.
"""
from __future__ import annotations

import enum
import logging
from functools import partial
from typing import Any, Callable, ClassVar, Dict, FrozenSet, Hashable, Iterable, List, Optional

from transitions import EventData, Machine  # type: ignore

logger = logging.getLogger(__name__)

TransitionObserver = Callable[[Optional["State"], "State"], None]

# Pseudo state the machine rests in before its first transition.
_UNSET = "_unset"


def _state_name(kind: Hashable) -> str:
    if isinstance(kind, enum.Enum):
        return str(kind.value)
    return str(kind)


class State:
    """Base class for machine states.

    Subclasses set ``kind`` and ``valid_next`` and override the hooks they
    need. Hooks receive the context passed to :meth:`StateMachine.enter`.
    """

    kind: ClassVar[Hashable]
    valid_next: ClassVar[FrozenSet[Hashable]] = frozenset()

    def is_valid_next(self, kind: Hashable) -> bool:
        return kind in self.valid_next

    def did_enter(self, context: Any, previous: Optional["State"]) -> None:
        """Called after the machine switched to this state."""

    def will_exit(self, context: Any, upcoming: "State") -> None:
        """Called before the machine leaves this state."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} kind={self.kind!r}>"


class StateMachine:
    def __init__(self, states: Iterable[State]) -> None:
        self._states: Dict[str, State] = {}
        for state in states:
            name = _state_name(state.kind)
            if name in self._states:
                raise ValueError(f"state kind {state.kind!r} registered twice")
            self._states[name] = state
        self._observers: List[TransitionObserver] = []

        self._machine = Machine(
            states=[_UNSET]
            + [
                {
                    "name": name,
                    "on_enter": partial(self._entered, state),
                    "on_exit": partial(self._exiting, state),
                }
                for name, state in self._states.items()
            ],
            initial=_UNSET,
            auto_transitions=False,
            ignore_invalid_triggers=True,
            send_event=True,
        )
        for name, state in self._states.items():
            self._machine.add_transition(trigger=self._trigger(name), source=_UNSET, dest=name)
            for kind in state.valid_next:
                upcoming = _state_name(kind)
                if upcoming in self._states:
                    self._machine.add_transition(
                        trigger=self._trigger(upcoming), source=name, dest=upcoming
                    )

    @staticmethod
    def _trigger(name: str) -> str:
        return f"enter_{name}"

    @property
    def current(self) -> Optional[State]:
        return self._states.get(self._machine.state)

    @property
    def states(self) -> List[State]:
        return list(self._states.values())

    def state_for(self, kind: Hashable) -> Optional[State]:
        return self._states.get(_state_name(kind))

    def can_enter(self, kind: Hashable) -> bool:
        name = _state_name(kind)
        if name not in self._states:
            return False
        return bool(self._machine.get_transitions(source=self._machine.state, dest=name))

    def enter(self, kind: Hashable, context: Any = None) -> bool:
        """Transition to the state registered for ``kind``.

        Returns ``False`` without side effects when the active state rejects
        ``kind`` or when ``kind`` was never registered.
        """

        name = _state_name(kind)
        if name not in self._states:
            logger.error("No state registered for kind %r", kind)
            return False
        if not self.can_enter(kind):
            return False
        return bool(self._machine.trigger(self._trigger(name), context=context))

    def add_observer(self, observer: TransitionObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: TransitionObserver) -> bool:
        try:
            self._observers.remove(observer)
        except ValueError:
            return False
        return True

    # ------------------------------------------------------------------
    # transitions callbacks
    # ------------------------------------------------------------------
    def _exiting(self, state: State, event: EventData) -> None:
        upcoming = self._states[event.transition.dest]
        state.will_exit(event.kwargs.get("context"), upcoming)

    def _entered(self, state: State, event: EventData) -> None:
        previous = self._states.get(event.transition.source)
        # Observers run before the entry hook, which may transition again.
        for observer in list(self._observers):
            observer(previous, state)
        state.did_enter(event.kwargs.get("context"), previous)


__all__ = ["State", "StateMachine", "TransitionObserver"]
