"""Tabular and plotted views of replicate and minimization results."""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Iterable, Optional

import matplotlib
matplotlib.use("Agg")  # Set before importing pyplot
import matplotlib.pyplot as plt
import pandas as pd

from ..docking.replicates import ReplicateResult
from ..physics.stages import MinimizationStage

POSE_COLUMNS = ["replicate", "name", "mode", "rank", "affinity", "cluster_size",
                "ref_rmsd", "cluster_rmsd", "contact_fraction", "best_run"]
STAGE_COLUMNS = ["stage", "environment", "iterations", "complex", "receptor", "peptide",
                 "interaction", "complex_minus_receptor", "drift", "output_pose"]

# pyplot keeps global figure state; targets may report from several threads
_PLOT_LOCK = threading.Lock()


def replicate_table(results: Iterable[ReplicateResult]) -> pd.DataFrame:
    """One row per ranked mode of every replicate."""
    rows = []
    for result in results:
        for pose in result.poses:
            row = pose.to_dict()
            row.update(replicate=result.index, name=result.name, mode=result.mode.value)
            rows.append(row)
    df = pd.DataFrame(rows)
    if df.empty:
        return pd.DataFrame(columns=POSE_COLUMNS)
    extra = [column for column in df.columns if column not in POSE_COLUMNS]
    return df[POSE_COLUMNS + extra]


def stage_table(stages: Iterable[MinimizationStage]) -> pd.DataFrame:
    """One row per sealed minimization stage, in run order."""
    rows = []
    for stage in stages:
        row = {
            "stage": stage.index,
            "environment": stage.spec.environment,
            "iterations": stage.spec.iterations,
            "drift": stage.drift,
            "output_pose": str(stage.output_pose),
        }
        row.update(stage.energies.to_dict())
        rows.append(row)
    return pd.DataFrame(rows, columns=STAGE_COLUMNS)


def plot_energy_trajectory(df: pd.DataFrame, output_path: Path,
                           title: Optional[str] = None) -> Optional[Path]:
    """Peptide energy and drift per stage; returns None when there is nothing to plot."""
    if df.empty:
        return None
    with _PLOT_LOCK:
        return _plot(df, output_path, title)


def _plot(df: pd.DataFrame, output_path: Path, title: Optional[str]) -> Path:
    fig, (ax_energy, ax_drift) = plt.subplots(1, 2, figsize=(12, 5))

    for environment, group in df.groupby("environment", sort=False):
        ax_energy.plot(group["stage"], group["peptide"], "o-", label=environment)
        ax_drift.plot(group["stage"], group["drift"], "s--", label=environment)
    ax_energy.set_xlabel("Stage")
    ax_energy.set_ylabel("E_Peptide (kcal/mol)")
    ax_energy.legend()
    ax_drift.set_xlabel("Stage")
    ax_drift.set_ylabel("Peptide drift (Å)")
    if title:
        fig.suptitle(title)

    fig.tight_layout()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path)
    plt.close(fig)
    return output_path
