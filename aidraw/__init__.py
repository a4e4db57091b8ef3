__all__ = [
    "AIConfig",
    "Create",
    "Patch",
    "SceneMerger",
    "SceneStore",
    "StreamBuffer",
    "extract_json_objects",
    "normalize_candidate",
    "run_draw_stream",
]

__version__ = "0.1.0"

from .config.loaders import AIConfig
from .pipeline.runner import run_draw_stream
from .scene.merger import SceneMerger
from .scene.normalizer import Create, Patch, normalize_candidate
from .scene.store import SceneStore
from .stream.extractor import StreamBuffer, extract_json_objects
