"""Configuration loading and validation."""
from .settings import (
    DEFAULT_STAGES,
    ENVIRONMENTS,
    MinimizationSettings,
    PepdockConfig,
    ProtonationSettings,
    SearchSettings,
    StageSpec,
    TargetSettings,
    ToolPaths,
    fidelity,
    load_config,
    normalize_environment,
)

__all__ = [
    "DEFAULT_STAGES",
    "ENVIRONMENTS",
    "MinimizationSettings",
    "PepdockConfig",
    "ProtonationSettings",
    "SearchSettings",
    "StageSpec",
    "TargetSettings",
    "ToolPaths",
    "fidelity",
    "load_config",
    "normalize_environment",
]
