__all__ = [
    "Create",
    "ElementMutation",
    "Patch",
    "SceneMerger",
    "SceneStore",
    "normalize_candidate",
    "normalize_candidates",
    "validate_snapshot",
]

from .merger import SceneMerger
from .normalizer import Create, ElementMutation, Patch, normalize_candidate, normalize_candidates
from .store import SceneStore, validate_snapshot
