"""Scoring models consumed by the simulation manager and the decision engine.

Import the implementation you need::

    from machine_monitor.scoring import SurrogateScoringModels
    from machine_monitor.scoring.onnx import OnnxScoringModels   # needs [onnx]
"""

from __future__ import annotations

import importlib
from typing import Any

from machine_monitor.scoring.base import ScoringModels, select_action
from machine_monitor.scoring.surrogate import SurrogateScoringModels

__all__ = [
    "SCORING_BACKENDS",
    "ScoringModels",
    "SurrogateScoringModels",
    "create_scoring_models",
    "select_action",
]

# Registry of backend names -> (module_path, class_name)
SCORING_BACKENDS: dict[str, tuple[str, str]] = {
    "surrogate": ("machine_monitor.scoring.surrogate", "SurrogateScoringModels"),
    "onnx": ("machine_monitor.scoring.onnx", "OnnxScoringModels"),
}


def create_scoring_models(backend: str = "surrogate", **kwargs: Any) -> ScoringModels:
    """Instantiate a scoring backend by name; *kwargs* go to its constructor."""
    name = backend.lower().strip()
    if name not in SCORING_BACKENDS:
        raise ValueError(f"Unknown scoring backend '{backend}'.  Available: {sorted(SCORING_BACKENDS)}")
    module_path, class_name = SCORING_BACKENDS[name]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls(**kwargs)


def __getattr__(name: str) -> Any:
    """Lazy-import backends that require optional dependencies."""
    if name == "OnnxScoringModels":
        return importlib.import_module("machine_monitor.scoring.onnx").OnnxScoringModels
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
