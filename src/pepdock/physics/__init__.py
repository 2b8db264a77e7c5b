"""
Pose minimization
- Minimizer wrapper and energy parsing
- Staged convergence driver
"""
from .minimizer import EnergyVector, coordinate_drift, minimize, parse_energies
from .stages import ConvergenceStatus, MinimizationOutcome, MinimizationStage, StageDriver

__all__ = [
    "ConvergenceStatus",
    "EnergyVector",
    "MinimizationOutcome",
    "MinimizationStage",
    "StageDriver",
    "coordinate_drift",
    "minimize",
    "parse_energies",
]
