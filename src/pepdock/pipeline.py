"""End-to-end orchestration: prepare, dock replicates, minimize, report."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import PepdockConfig
from .docking.replicates import ReplicateController, SelectedPose
from .exceptions import PepdockError
from .physics.stages import MinimizationOutcome, StageDriver
from .prep.target_prep import PreparedTarget, prepare_target
from .reporting import write_run_report
from .utils.run_dirs import RunLayout, TargetLock
from .utils.toolchain import CancelToken

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Everything one target run produced."""

    target: str
    workdir: Path
    prepared: PreparedTarget
    selected: SelectedPose
    minimization: MinimizationOutcome
    report: Dict[str, object]

    @property
    def final_pose(self) -> Optional[Path]:
        return self.minimization.final_pose


class DockingPipeline:
    """Run one docking target end-to-end inside its own working directory."""

    def __init__(self, config: PepdockConfig, cancel: Optional[CancelToken] = None):
        self.config = config
        self.cancel = cancel or CancelToken()
        self.layout = RunLayout(config.workdir)
        self.prepared: Optional[PreparedTarget] = None
        self.controller: Optional[ReplicateController] = None
        self.selected: Optional[SelectedPose] = None
        self.outcome: Optional[MinimizationOutcome] = None

    def run(self) -> PipelineResult:
        name = self.config.target.name
        start = time.time()
        with TargetLock(self.layout.workdir, name):
            logger.info("Running %s in %s", name, self.layout.workdir)
            try:
                self.prepared = prepare_target(self.config, self.layout.prep_dir, cancel=self.cancel)

                self.controller = ReplicateController(self.config, self.layout,
                                                      self.prepared.target_file, cancel=self.cancel)
                self.selected = self.controller.run()

                driver = StageDriver(self.config, self.layout, self.prepared.target_file,
                                     cancel=self.cancel)
                self.outcome = driver.run(self.selected.pose_path, resume=self.config.search.resume)
            except PepdockError as exc:
                logger.error("Run for %s failed: %s", name, exc)
                self._report(start, status="failed")
                raise

            report = self._report(start)
        logger.info("Run for %s finished: %s", name, self.outcome.status.value)
        return PipelineResult(
            target=name,
            workdir=self.layout.workdir,
            prepared=self.prepared,
            selected=self.selected,
            minimization=self.outcome,
            report=report,
        )

    def _report(self, start: float, status: str = "success") -> Dict[str, object]:
        return write_run_report(
            self.layout.report_dir,
            self.config,
            self.prepared,
            self.controller.results if self.controller else [],
            self.selected,
            self.outcome,
            execution_time=time.time() - start,
            status=status,
        )


@dataclass
class TargetOutcome:
    target: str
    result: Optional[PipelineResult] = None
    error: Optional[PepdockError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_targets(configs: Sequence[PepdockConfig], max_workers: int = 1,
                cancel: Optional[CancelToken] = None) -> List[TargetOutcome]:
    """
    Run independent targets in parallel, one thread per target.

    A failing target does not stop the others; its error is returned in its
    TargetOutcome. Results come back in the order of *configs*.
    """
    names = [config.target.name for config in configs]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate target names: {names}")

    cancel = cancel or CancelToken()
    outcomes: Dict[str, TargetOutcome] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_name = {
            executor.submit(DockingPipeline(config, cancel).run): config.target.name
            for config in configs
        }
        for future in as_completed(future_to_name):
            name = future_to_name[future]
            try:
                outcomes[name] = TargetOutcome(name, result=future.result())
            except PepdockError as exc:
                logger.error("Target %s failed: %s", name, exc)
                outcomes[name] = TargetOutcome(name, error=exc)

    ok = sum(outcome.ok for outcome in outcomes.values())
    logger.info("Finished %d/%d targets", ok, len(configs))
    return [outcomes[name] for name in names]
