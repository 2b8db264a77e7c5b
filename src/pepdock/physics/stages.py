"""Staged, convergence-monitored minimization of a selected pose."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..config import MinimizationSettings, PepdockConfig, StageSpec, fidelity
from ..exceptions import PepdockError, RunCancelled
from ..utils.file_io import read_json, safe_write_json
from ..utils.run_dirs import RunLayout
from ..utils.toolchain import CancelToken
from .minimizer import EnergyVector, coordinate_drift, minimize

logger = logging.getLogger(__name__)


class ConvergenceStatus(str, Enum):
    ACCEPTED = "Accepted"
    NON_CONVERGENT = "NonConvergent"


@dataclass(frozen=True)
class MinimizationStage:
    """Sealed result of one minimization stage."""

    index: int
    spec: StageSpec
    input_pose: Path
    output_pose: Path
    energies: EnergyVector
    drift: float

    @property
    def name(self) -> str:
        return f"stage_{self.index:02d}_{self.spec.name}"

    def to_dict(self) -> Dict[str, object]:
        return {
            "index": self.index,
            "iterations": self.spec.iterations,
            "environment": self.spec.environment,
            "input_pose": str(self.input_pose),
            "output_pose": str(self.output_pose),
            "energies": self.energies.to_dict(),
            "drift": self.drift,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "MinimizationStage":
        return cls(
            index=int(data["index"]),
            spec=StageSpec(int(data["iterations"]), str(data["environment"])),
            input_pose=Path(data["input_pose"]),
            output_pose=Path(data["output_pose"]),
            energies=EnergyVector.from_dict(data["energies"]),
            drift=float(data["drift"]),
        )


@dataclass
class MinimizationOutcome:
    stages: List[MinimizationStage]
    status: ConvergenceStatus
    accepted: Optional[MinimizationStage]
    converged_levels: Dict[str, bool] = field(default_factory=dict)

    @property
    def final_pose(self) -> Optional[Path]:
        return self.accepted.output_pose if self.accepted else None

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "accepted_stage": self.accepted.index if self.accepted else None,
            "final_pose": str(self.final_pose) if self.final_pose else None,
            "converged_levels": self.converged_levels,
            "stages": [stage.to_dict() for stage in self.stages],
        }


def relative_decrease(previous: float, current: float) -> float:
    """(previous - current) / |previous|; positive while the energy still falls."""
    if previous == 0:
        return previous - current
    return (previous - current) / abs(previous)


def is_stable(previous: MinimizationStage, current: MinimizationStage,
              settings: MinimizationSettings) -> bool:
    """A transition is stable when the peptide energy has levelled off and the pose stayed put."""
    decrease = relative_decrease(previous.energies.peptide, current.energies.peptide)
    return decrease <= settings.relative_threshold and current.drift <= settings.max_drift


class StageDriver:
    """
    Run the configured stages in order, escalating environment fidelity once
    the peptide energy is stable at the current level.

    Energies are only compared between stages of the same environment. After
    ``stable_window`` consecutive stable transitions a level has converged:
    the driver jumps to the first stage of the next level, or stops at the
    highest one. Running out of stages at the last level without converging
    yields ``NonConvergent``; the last stage is still returned as the
    best-effort pose.
    """

    def __init__(self, config: PepdockConfig, layout: RunLayout, target_file: Path,
                 cancel: Optional[CancelToken] = None):
        self.config = config
        self.settings = config.minimization
        self.layout = layout
        self.target_file = Path(target_file)
        self.cancel = cancel
        self.stages: List[MinimizationStage] = []
        self.start_pose: Optional[Path] = None

    def run(self, pose: Path, resume: bool = False) -> MinimizationOutcome:
        specs = list(self.settings.stages)
        if not specs:
            raise ValueError("No minimization stages configured")
        final_level = max(fidelity(spec.environment) for spec in specs)
        if not resume:
            self.layout.reset("minimization")
        converged: Dict[str, bool] = {}

        self.start_pose = current_input = Path(pose)
        level_stages: List[MinimizationStage] = []
        stable_count = 0
        i = 0
        while i < len(specs):
            spec = specs[i]
            if level_stages and level_stages[-1].spec.environment != spec.environment:
                converged.setdefault(level_stages[-1].spec.environment, False)
                level_stages, stable_count = [], 0

            stage = self._run_stage(len(self.stages) + 1, spec, current_input, resume)
            self.stages.append(stage)
            current_input = stage.output_pose

            if level_stages:
                if is_stable(level_stages[-1], stage, self.settings):
                    stable_count += 1
                else:
                    stable_count = 0
            level_stages.append(stage)
            logger.info("Stage %s: E_peptide=%.3f drift=%.2f stable=%d/%d",
                        stage.name, stage.energies.peptide, stage.drift,
                        stable_count, self.settings.stable_window)

            if stable_count >= self.settings.stable_window:
                converged[spec.environment] = True
                if fidelity(spec.environment) >= final_level:
                    return self._finish(ConvergenceStatus.ACCEPTED, converged)
                i = self._next_level_index(specs, i)
                logger.info("Environment %s converged; escalating", spec.environment)
                continue
            i += 1

        converged.setdefault(self.stages[-1].spec.environment, False)
        return self._finish(ConvergenceStatus.NON_CONVERGENT, converged)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _next_level_index(specs: Sequence[StageSpec], i: int) -> int:
        level = fidelity(specs[i].environment)
        j = i + 1
        while j < len(specs) and fidelity(specs[j].environment) <= level:
            j += 1
        return j

    def _finish(self, status: ConvergenceStatus, converged: Dict[str, bool]) -> MinimizationOutcome:
        accepted = self.stages[-1]
        if status is ConvergenceStatus.NON_CONVERGENT:
            logger.warning(
                "Pose did not reach a stable peptide energy within the configured stages "
                "(last stage %s, drift %.2f); returning it as best effort",
                accepted.name, accepted.drift,
            )
        self._prune_stale()
        outcome = MinimizationOutcome(stages=list(self.stages), status=status,
                                      accepted=accepted, converged_levels=converged)
        safe_write_json(outcome.to_dict(), self.layout.minimization_dir / "outcome.json")
        return outcome

    def _prune_stale(self) -> None:
        current = {stage.name for stage in self.stages}
        for path in sorted(self.layout.minimization_dir.glob("stage_*")):
            if path.is_dir() and path.name not in current:
                logger.info("Removing stage %s left over from an earlier run", path.name)
                shutil.rmtree(path)

    @property
    def last_sealed(self) -> Optional[Path]:
        return self.stages[-1].output_pose if self.stages else self.start_pose

    def _run_stage(self, index: int, spec: StageSpec, input_pose: Path,
                   resume: bool) -> MinimizationStage:
        name = f"stage_{index:02d}_{spec.name}"
        stage_dir = self.layout.stage_dir("minimization", name, create=False)
        sealed = stage_dir / "stage.json"
        if resume and sealed.exists():
            stage = MinimizationStage.from_dict(read_json(sealed))
            if stage.input_pose == input_pose and stage.spec == spec:
                logger.info("Reusing sealed stage %s", name)
                return stage

        RunLayout.discard(stage_dir)
        stage_dir.mkdir(parents=True)
        try:
            output_pose, energies = minimize(
                self.config.tools.minimizer,
                self.target_file,
                input_pose,
                spec.iterations,
                spec.environment,
                stage_dir,
                name,
                keep_intermediates=self.settings.keep_intermediates,
                cancel=self.cancel,
            )
            drift = coordinate_drift(input_pose, output_pose)
        except RunCancelled as exc:
            RunLayout.discard(stage_dir)
            raise exc.with_context(stage=name, last_sealed=self.last_sealed)
        except PepdockError as exc:
            logger.error("Minimization stage %s failed: %s", name, exc.message)
            raise exc.with_context(stage=name, last_sealed=self.last_sealed)

        stage = MinimizationStage(index=index, spec=spec, input_pose=Path(input_pose),
                                  output_pose=output_pose, energies=energies, drift=drift)
        safe_write_json(stage.to_dict(), sealed)
        return stage
