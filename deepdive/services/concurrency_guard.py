"""Per-session operation guards.

A guard is a set of boolean flags, one per operation class ("init",
"submit", "complete", "escalate"). It is not an OS mutex: the orchestrator
runs on a single event loop, and the check-and-set in try_enter() has no
await in it, so two coroutines can never both observe a flag as free.
"""

from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, Set

import structlog

log = structlog.get_logger(__name__)

INIT = "init"
SUBMIT = "submit"
COMPLETE = "complete"
ESCALATE = "escalate"


class ConcurrencyGuard:
    """Boolean lock flags scoped to one session."""

    def __init__(self, scope: str = ""):
        self.scope = scope
        self._held: Set[str] = set()

    def try_enter(self, name: str, excludes: Iterable[str] = ()) -> bool:
        """Take the named lock.

        Returns False, changing nothing, if the lock or any lock named in
        excludes is already held.
        """
        blocking = [n for n in (name, *excludes) if n in self._held]
        if blocking:
            log.info("guard_rejected", scope=self.scope, lock=name, held=blocking)
            return False
        self._held.add(name)
        return True

    def exit(self, name: str) -> None:
        self._held.discard(name)

    def is_held(self, name: str) -> bool:
        return name in self._held

    @contextmanager
    def entered(self, name: str, excludes: Iterable[str] = ()) -> Iterator[bool]:
        """Scoped acquisition.

        Yields whether the lock was taken; releases it on every exit path
        when (and only when) this block took it.

            with guard.entered("submit") as acquired:
                if not acquired:
                    return session
                ...
        """
        acquired = self.try_enter(name, excludes)
        try:
            yield acquired
        finally:
            if acquired:
                self.exit(name)


class GuardRegistry:
    """Hands out one ConcurrencyGuard per session key."""

    def __init__(self) -> None:
        self._guards: Dict[str, ConcurrencyGuard] = {}

    def for_session(self, key: str) -> ConcurrencyGuard:
        guard = self._guards.get(key)
        if guard is None:
            guard = ConcurrencyGuard(scope=key)
            self._guards[key] = guard
        return guard

