from __future__ import annotations

import copy
import logging
import random
from typing import Any, Callable, Iterable, Optional

from .normalizer import Create, ElementMutation, Patch, now_ms
from .store import SceneStore

logger = logging.getLogger(__name__)


class SceneMerger:
    """
    Authoritative, ordered element collection fed by normalized mutations.

    Insertion order is draw order. Identifiers stay unique: a Create whose id
    is taken is stored under ``<id>-<n>`` instead, and never overwrites the
    existing element. A Patch for an unknown id is ignored.
    """

    def __init__(
        self,
        *,
        store: Optional[SceneStore] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = now_ms,
        on_change: Optional[Callable[[list[dict[str, Any]]], None]] = None,
    ) -> None:
        self.store = store
        self.rng = rng or random.Random()
        self.clock = clock
        self.on_change = on_change
        self._elements: dict[str, dict[str, Any]] = {}
        if store is not None:
            for element in store.load() or []:
                element_id = element["id"]
                if element_id in self._elements:
                    element_id = self._derive_id(element_id)
                    element = {**element, "id": element_id}
                self._elements[element_id] = element

    def __len__(self) -> int:
        return len(self._elements)

    def __contains__(self, element_id: object) -> bool:
        return element_id in self._elements

    def get(self, element_id: str) -> Optional[dict[str, Any]]:
        element = self._elements.get(element_id)
        return copy.deepcopy(element) if element is not None else None

    def _derive_id(self, element_id: str) -> str:
        n = 1
        while f"{element_id}-{n}" in self._elements:
            n += 1
        return f"{element_id}-{n}"

    def _apply_create(self, mutation: Create) -> str:
        element_id = mutation.id
        fields = copy.deepcopy(mutation.fields)
        if element_id in self._elements:
            new_id = self._derive_id(element_id)
            logger.debug("id collision on %r; inserting as %r", element_id, new_id)
            element_id = new_id
        fields["id"] = element_id
        self._elements[element_id] = fields
        return element_id

    def _apply_patch(self, mutation: Patch) -> bool:
        existing = self._elements.get(mutation.id)
        if existing is None:
            logger.debug("patch for unknown id %r ignored", mutation.id)
            return False
        prev = existing.get("version")
        base = prev if isinstance(prev, int) and not isinstance(prev, bool) else 0
        for key, value in mutation.fields.items():
            if key == "id":
                continue
            existing[key] = copy.deepcopy(value)
        existing["version"] = base + 1
        existing["versionNonce"] = self.rng.randrange(1_000_000_000)
        existing["updated"] = self.clock()
        return True

    def apply_batch(self, mutations: Iterable[ElementMutation]) -> list[dict[str, Any]]:
        changed = False
        for mutation in mutations:
            if isinstance(mutation, Create):
                self._apply_create(mutation)
                changed = True
            elif isinstance(mutation, Patch):
                changed = self._apply_patch(mutation) or changed
            else:
                raise TypeError(f"unsupported mutation: {mutation!r}")

        snapshot = self.snapshot()
        if changed:
            if self.store is not None:
                self.store.save(snapshot)
            if self.on_change is not None:
                self.on_change(snapshot)
        return snapshot

    def clear(self) -> None:
        self._elements.clear()
        if self.store is not None:
            self.store.remove()

    def snapshot(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(el) for el in self._elements.values()]

    def active_elements(self) -> list[dict[str, Any]]:
        return [el for el in self.snapshot() if not el.get("isDeleted")]


__all__ = ["SceneMerger"]
