# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim Models — minimal entity/observation framework
#
# A Model notifies observers when it changes and emits typed events to
# subscribers. Observations are owned by the observing model: callbacks
# are stored against a weak reference to it, so an observer that has been
# garbage-collected stops receiving notifications without explicit cleanup.

import logging
import weakref
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


class Subscription:
    """Handle for one registered observation or subscription."""

    def __init__(self, registry: List["Subscription"], owner: Optional["Model"], callback: Callable):
        self._registry = registry
        self._owner_ref = weakref.ref(owner) if owner is not None else None
        self.callback = callback
        self.active = True

    @property
    def owner(self) -> Optional["Model"]:
        if self._owner_ref is None:
            return None
        return self._owner_ref()

    @property
    def alive(self) -> bool:
        return self.active and (self._owner_ref is None or self._owner_ref() is not None)

    def cancel(self) -> None:
        self.active = False
        if self in self._registry:
            self._registry.remove(self)


class Model:
    """Base class for observable entities."""

    def __init__(self):
        self._observations: List[Subscription] = []
        self._subscriptions: List[Subscription] = []

    def observe(self, target: "Model", callback: Callable[["Model", "Model"], None]) -> Subscription:
        """Call callback(self, target) every time target.notify() runs."""
        sub = Subscription(target._observations, self, callback)
        target._observations.append(sub)
        return sub

    def subscribe(self, target: "Model", callback: Callable[["Model", "Model", Any], None]) -> Subscription:
        """Call callback(self, target, event) for every event target emits."""
        sub = Subscription(target._subscriptions, self, callback)
        target._subscriptions.append(sub)
        return sub

    def notify(self) -> None:
        for sub in self._live(self._observations):
            sub.callback(sub.owner, self)

    def emit(self, event: Any) -> None:
        for sub in self._live(self._subscriptions):
            sub.callback(sub.owner, self, event)

    @staticmethod
    def _live(registry: List[Subscription]) -> List[Subscription]:
        # Prune observers that were collected since the last notification
        dead = [s for s in registry if not s.alive]
        for sub in dead:
            registry.remove(sub)
        return list(registry)

    @property
    def observer_count(self) -> int:
        return len(self._live(self._observations))
