"""Write the end-of-run report bundle for one target."""
from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from ..config import PepdockConfig
from ..docking.replicates import ReplicateResult, SelectedPose
from ..physics.stages import MinimizationOutcome
from ..prep.target_prep import PreparedTarget
from ..utils.file_io import safe_write_json
from .html_report import generate_html_report
from .tables import plot_energy_trajectory, replicate_table, stage_table

logger = logging.getLogger(__name__)


def write_run_report(
    report_dir: Path,
    config: PepdockConfig,
    prepared: Optional[PreparedTarget],
    replicates: Sequence[ReplicateResult],
    selected: Optional[SelectedPose],
    outcome: Optional[MinimizationOutcome],
    execution_time: Optional[float] = None,
    status: str = "success",
) -> Dict[str, Any]:
    """
    Write pose/stage CSV tables, the energy plot, summary.json and report.html.

    Returns the summary dictionary that was written.
    """
    report_dir.mkdir(parents=True, exist_ok=True)
    artifacts: Dict[str, Optional[str]] = {}

    poses = replicate_table(replicates)
    pose_csv = report_dir / "replicate_poses.csv"
    poses.to_csv(pose_csv, index=False)
    artifacts["pose_table"] = str(pose_csv)

    if outcome is not None:
        stages = stage_table(outcome.stages)
        stage_csv = report_dir / "minimization_stages.csv"
        stages.to_csv(stage_csv, index=False)
        artifacts["stage_table"] = str(stage_csv)
        plot = plot_energy_trajectory(stages, report_dir / "energy_trajectory.png",
                                      title=f"{config.target.name}: {outcome.status.value}")
        artifacts["energy_plot"] = str(plot) if plot else None

    summary = {
        "target": config.target.name,
        "status": status,
        "timestamp": datetime.now().isoformat(timespec="seconds"),
        "performance": {"execution_time_sec": round(execution_time, 1) if execution_time else None},
        "preparation": prepared.summary() if prepared else None,
        "selected": selected.to_dict() if selected else None,
        "minimization": outcome.to_dict() if outcome else None,
        "artifacts": artifacts,
        "config": asdict(config),
    }
    summary_path = safe_write_json(summary, report_dir / "summary.json")
    generate_html_report(summary_path, report_dir / "report.html")
    logger.info("Report written to %s", report_dir)
    return summary
