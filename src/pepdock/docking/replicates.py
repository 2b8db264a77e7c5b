"""
Replicate sequencing, reference propagation and best-pose selection.

The controller walks a fixed sequence of states:

    Init -> Refine (x k) -> SelectBest -> ContactRefine -> Selected

Each replicate is one blocking run of the search tool. Its outcome is sealed
(``sealed.json``) as soon as it completes and is never modified afterwards;
only sealed replicates feed a reference into the next one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import PepdockConfig
from ..exceptions import AmbiguousTieError, PepdockError, RunCancelled
from ..prep.records import extract_model, read_records, write_records
from ..utils.file_io import read_json, safe_write_json
from ..utils.run_dirs import RunLayout
from ..utils.toolchain import CancelToken
from .adcp_wrapper import ClusterMode, PoseEntry, dock

logger = logging.getLogger(__name__)

AFFINITY_TOLERANCE = 1e-6


class ControllerState(str, Enum):
    INIT = "Init"
    REFINE = "Refine"
    SELECT_BEST = "SelectBest"
    CONTACT_REFINE = "ContactRefine"
    SELECTED = "Selected"


@dataclass(frozen=True)
class ReferenceSelection:
    """Reference pose and clustering rule handed to the next replicate."""

    pose: Optional[Path]
    mode: ClusterMode = ClusterMode.RMSD
    contact_cutoff: float = 0.8
    source_replicate: Optional[int] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "pose": str(self.pose) if self.pose else None,
            "mode": self.mode.value,
            "contact_cutoff": self.contact_cutoff,
            "source_replicate": self.source_replicate,
        }


@dataclass(frozen=True)
class ReplicateResult:
    """Sealed outcome of one search replicate."""

    index: int
    name: str
    mode: ClusterMode
    poses: Tuple[PoseEntry, ...]
    poses_path: Path
    top_pose_path: Path
    summary_path: Path
    reference: Optional[Path] = None

    @property
    def top(self) -> PoseEntry:
        return self.poses[0]

    def to_dict(self) -> Dict[str, object]:
        return {
            "index": self.index,
            "name": self.name,
            "mode": self.mode.value,
            "poses": [pose.to_dict() for pose in self.poses],
            "poses_path": str(self.poses_path),
            "top_pose_path": str(self.top_pose_path),
            "summary_path": str(self.summary_path),
            "reference": str(self.reference) if self.reference else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "ReplicateResult":
        return cls(
            index=int(data["index"]),
            name=str(data["name"]),
            mode=ClusterMode(data["mode"]),
            poses=tuple(PoseEntry.from_dict(pose) for pose in data["poses"]),
            poses_path=Path(data["poses_path"]),
            top_pose_path=Path(data["top_pose_path"]),
            summary_path=Path(data["summary_path"]),
            reference=Path(data["reference"]) if data.get("reference") else None,
        )


@dataclass(frozen=True)
class SelectedPose:
    """Terminal output of the controller."""

    pose_path: Path
    affinity: float
    contact_fraction: Optional[float]
    replicate: int
    reference_replicate: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "pose_path": str(self.pose_path),
            "affinity": self.affinity,
            "contact_fraction": self.contact_fraction,
            "replicate": self.replicate,
            "reference_replicate": self.reference_replicate,
        }


def select_best(results: Sequence[ReplicateResult], strict: bool = False) -> ReplicateResult:
    """
    Pick the replicate whose top pose has the strictly lowest affinity.

    Exact ties go to the earlier replicate. With ``strict=True`` a tie for
    the best affinity raises AmbiguousTieError instead.
    """
    if not results:
        raise ValueError("select_best needs at least one replicate result")
    best = results[0]
    tied = [best]
    for result in results[1:]:
        delta = result.top.affinity - best.top.affinity
        if delta < -AFFINITY_TOLERANCE:
            best, tied = result, [result]
        elif abs(delta) <= AFFINITY_TOLERANCE:
            tied.append(result)

    if len(tied) > 1:
        names = ", ".join(str(r.index) for r in tied)
        if strict:
            raise AmbiguousTieError(
                f"Replicates {names} tie at affinity {best.top.affinity}", stage="SelectBest"
            )
        logger.info("Replicates %s tie at %.3f; keeping earlier replicate %d",
                    names, best.top.affinity, best.index)
    return best


class ReplicateController:
    """Run the replicate state machine for one target."""

    def __init__(self, config: PepdockConfig, layout: RunLayout, target_file: Path,
                 cancel: Optional[CancelToken] = None):
        self.config = config
        self.settings = config.search
        self.layout = layout
        self.target_file = Path(target_file)
        self.cancel = cancel
        self.state = ControllerState.INIT
        self.results: List[ReplicateResult] = []
        self.reference = ReferenceSelection(
            pose=config.target.seed_reference,
            contact_cutoff=self.settings.contact_cutoff,
        )
        self.artifacts: List[Dict[str, str]] = []
        self.last_sealed: Optional[Path] = None
        self.recomputed = False
        self.state_path = layout.replicates_dir / "state.json"

    def run(self) -> SelectedPose:
        n = self.settings.replicates
        if not self.settings.resume:
            self.layout.reset("replicates")
        logger.info("Starting %d replicates for %s", n, self.config.target.name)
        for k in range(1, n + 1):
            self.state = ControllerState.INIT if k == 1 else ControllerState.REFINE
            result = self._run_replicate(k, self.reference)
            self.results.append(result)
            self._set_reference(ReferenceSelection(
                pose=result.top_pose_path,
                mode=ClusterMode.RMSD,
                contact_cutoff=self.settings.contact_cutoff,
                source_replicate=result.index,
            ))

        self.state = ControllerState.SELECT_BEST
        try:
            winner = select_best(self.results, strict=self.settings.strict_ties)
        except AmbiguousTieError as exc:
            raise exc.with_context(last_sealed=self.last_sealed)
        logger.info("SelectBest: replicate %d (affinity %.3f)", winner.index, winner.top.affinity)
        self._set_reference(ReferenceSelection(
            pose=winner.top_pose_path,
            mode=ClusterMode.CONTACT,
            contact_cutoff=self.settings.contact_cutoff,
            source_replicate=winner.index,
        ))

        self.state = ControllerState.CONTACT_REFINE
        final = self._run_replicate(n + 1, self.reference)
        self.results.append(final)

        self.state = ControllerState.SELECTED
        selected = SelectedPose(
            pose_path=final.top_pose_path,
            affinity=final.top.affinity,
            contact_fraction=final.top.contact_fraction,
            replicate=final.index,
            reference_replicate=winner.index,
        )
        self._persist(selected)
        logger.info("Selected pose %s (affinity %.3f, contact_fraction=%s)",
                    selected.pose_path, selected.affinity, selected.contact_fraction)
        return selected

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _replicate_name(self, index: int, mode: ClusterMode) -> str:
        suffix = "_contact" if mode is ClusterMode.CONTACT else ""
        return f"rep_{index:02d}{suffix}"

    def _set_reference(self, reference: ReferenceSelection) -> None:
        self.reference = reference
        self._persist()

    def _run_replicate(self, index: int, reference: ReferenceSelection) -> ReplicateResult:
        name = self._replicate_name(index, reference.mode)
        rep_dir = self.layout.stage_dir("replicates", name, create=False)
        sealed = rep_dir / "sealed.json"

        if self.settings.resume and sealed.exists():
            result = ReplicateResult.from_dict(read_json(sealed))
            if (not self.recomputed and result.reference == reference.pose
                    and result.mode is reference.mode):
                logger.info("Reusing sealed replicate %s (top affinity %.3f)", name, result.top.affinity)
                self._seal(result, sealed, write=False)
                return result
            logger.info("Sealed replicate %s is stale against the current reference, rerunning", name)

        RunLayout.discard(rep_dir)
        rep_dir.mkdir(parents=True)
        try:
            summary, poses_path, entries = dock(
                self.config.tools.adcp,
                self.target_file,
                self.config.target.sequence,
                rep_dir,
                f"{self.config.target.name}_{name}",
                num_runs=self.settings.num_runs,
                num_steps=self.settings.num_steps,
                workers=self.settings.workers,
                reference=reference.pose,
                mode=reference.mode,
                contact_cutoff=reference.contact_cutoff,
                cancel=self.cancel,
            )
            top_pose = write_records(rep_dir / "top_pose.pdb",
                                     extract_model(read_records(poses_path), 1) + ["END"])
        except RunCancelled as exc:
            RunLayout.discard(rep_dir)
            raise exc.with_context(stage=name, last_sealed=self.last_sealed)
        except PepdockError as exc:
            logger.error("Replicate %s failed: %s", name, exc.message)
            raise exc.with_context(stage=name, last_sealed=self.last_sealed)

        result = ReplicateResult(
            index=index,
            name=name,
            mode=reference.mode,
            poses=tuple(entries),
            poses_path=poses_path,
            top_pose_path=top_pose,
            summary_path=summary,
            reference=reference.pose,
        )
        self.recomputed = True
        self._seal(result, sealed)
        logger.info("Replicate %s sealed: top affinity %.3f, %d modes",
                    name, result.top.affinity, len(result.poses))
        return result

    def _seal(self, result: ReplicateResult, sealed: Path, write: bool = True) -> None:
        if write:
            safe_write_json(result.to_dict(), sealed)
        self.last_sealed = sealed
        self.artifacts.append({"name": result.name, "sealed": str(sealed)})
        self._persist()

    def _persist(self, selected: Optional[SelectedPose] = None) -> None:
        data = {
            "state": self.state.value,
            "reference": self.reference.to_dict(),
            "artifacts": self.artifacts,
        }
        if selected is not None:
            data["selected"] = selected.to_dict()
        safe_write_json(data, self.state_path)
