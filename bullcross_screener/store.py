from __future__ import annotations

from collections import OrderedDict
from typing import Hashable, List, Sequence

from .models import Signal


def sort_signals(signals: Sequence[Signal]) -> List[Signal]:
    """Strong first, newest first within each tier."""
    return sorted(signals, key=lambda s: (0 if s.is_strong else 1, -s.timestamp))


class SignalStore:
    """Seen-identity history plus the list of signals currently on display."""

    def __init__(self, seen_capacity: int = 1000, seen_trim_to: int = 500, visible_capacity: int = 100) -> None:
        self.seen_capacity = max(1, int(seen_capacity))
        self.seen_trim_to = max(0, min(int(seen_trim_to), self.seen_capacity))
        self.visible_capacity = max(1, int(visible_capacity))
        self._seen: "OrderedDict[Hashable, None]" = OrderedDict()
        self._visible: List[Signal] = []

    def __len__(self) -> int:
        return len(self._visible)

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def seen(self, sig: Signal) -> bool:
        return sig.identity in self._seen

    def admit(self, signals: Sequence[Signal]) -> List[Signal]:
        """Record ``signals`` and return the ones not seen before, in order."""
        fresh: List[Signal] = []
        for sig in signals:
            key = sig.identity
            if key in self._seen:
                continue
            self._seen[key] = None
            fresh.append(sig)

        if len(self._seen) > self.seen_capacity:
            # keep the newest identities
            while len(self._seen) > self.seen_trim_to:
                self._seen.popitem(last=False)

        self._visible = (fresh + self._visible)[: self.visible_capacity]
        return fresh

    def visible(self) -> List[Signal]:
        return sort_signals(self._visible)
