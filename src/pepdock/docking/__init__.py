"""Docking module interface."""
from .adcp_wrapper import ClusterMode, PoseEntry, dock, parse_summary
from .replicates import (
    ControllerState,
    ReferenceSelection,
    ReplicateController,
    ReplicateResult,
    SelectedPose,
    select_best,
)

__all__ = [
    "ClusterMode",
    "ControllerState",
    "PoseEntry",
    "ReferenceSelection",
    "ReplicateController",
    "ReplicateResult",
    "SelectedPose",
    "dock",
    "parse_summary",
    "select_best",
]
