"""Thin wrapper around the `adcp` peptide docking CLI and its ranked summary."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..exceptions import ExternalToolFailure
from ..utils.toolchain import CancelToken, need, require_artifact, run_tool

logger = logging.getLogger(__name__)


class ClusterMode(str, Enum):
    """How the search tool clusters and ranks poses against the reference."""

    RMSD = "rmsd"
    CONTACT = "contact"


# Column headers of the summary table -> PoseEntry fields
_COLUMN_MAP = {
    "mode": "rank",
    "affinity (kcal/mol)": "affinity",
    "clust. size": "cluster_size",
    "ref. rmsd": "ref_rmsd",
    "clust. rmsd": "cluster_rmsd",
    "ref. fnc": "contact_fraction",
    "best run": "best_run",
}


@dataclass(frozen=True)
class PoseEntry:
    """One ranked mode of a replicate's summary."""

    rank: int
    affinity: float
    cluster_size: Optional[int] = None
    ref_rmsd: Optional[float] = None
    cluster_rmsd: Optional[float] = None
    contact_fraction: Optional[float] = None
    best_run: Optional[str] = None
    extra: Dict[str, Optional[float]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        data = {
            "rank": self.rank,
            "affinity": self.affinity,
            "cluster_size": self.cluster_size,
            "ref_rmsd": self.ref_rmsd,
            "cluster_rmsd": self.cluster_rmsd,
            "contact_fraction": self.contact_fraction,
            "best_run": self.best_run,
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "PoseEntry":
        known = {key: data.get(key) for key in
                 ("cluster_size", "ref_rmsd", "cluster_rmsd", "contact_fraction", "best_run")}
        extra = {key: value for key, value in data.items()
                 if key not in known and key not in ("rank", "affinity")}
        return cls(rank=int(data["rank"]), affinity=float(data["affinity"]), extra=extra, **known)


def _float_or_none(token: str) -> Optional[float]:
    if token.upper() in ("NA", "N/A", "-"):
        return None
    return float(token)


def _header_columns(first: str, second: str) -> List[str]:
    top = first.split("|")
    bottom = second.split("|")
    bottom += [""] * (len(top) - len(bottom))
    columns = []
    for upper, lower in zip(top, bottom):
        name = " ".join(part for part in (upper.strip(), lower.strip()) if part).lower()
        if name:
            columns.append(name)
    return columns


def parse_summary(text: str) -> List[PoseEntry]:
    """
    Parse the ranked mode table printed by the search tool.

    The table is two header lines split by ``|``, a dashed rule, then one
    whitespace-separated row per mode. Columns are recognized by header so
    both the RMSD and the contact-fraction layouts parse.
    """
    lines = text.splitlines()
    start = next((i for i, line in enumerate(lines) if line.strip().lower().startswith("mode |")), None)
    if start is None or start + 2 >= len(lines):
        raise ExternalToolFailure("Search summary has no mode table")

    columns = _header_columns(lines[start], lines[start + 1])
    entries: List[PoseEntry] = []
    for line in lines[start + 3:]:
        tokens = line.split()
        if not tokens or not tokens[0].isdigit():
            break
        if len(tokens) != len(columns):
            raise ExternalToolFailure(
                f"Summary row has {len(tokens)} fields, header has {len(columns)}: {line.strip()!r}"
            )
        row: Dict[str, object] = {}
        extra: Dict[str, Optional[float]] = {}
        try:
            for column, token in zip(columns, tokens):
                key = _COLUMN_MAP.get(column)
                if key is None:
                    extra[column.replace(" ", "_").replace(".", "")] = _float_or_none(token)
                elif key == "rank":
                    row[key] = int(token)
                elif key == "best_run":
                    row[key] = token
                elif key == "cluster_size":
                    value = _float_or_none(token)
                    row[key] = None if value is None else int(value)
                else:
                    row[key] = _float_or_none(token)
        except ValueError as exc:
            raise ExternalToolFailure(f"Unparseable summary row: {line.strip()!r}") from exc
        if row.get("affinity") is None:
            raise ExternalToolFailure(f"Summary row without affinity: {line.strip()!r}")
        entries.append(PoseEntry(extra=extra, **row))

    if not entries:
        raise ExternalToolFailure("Search summary lists no poses")
    return entries


def build_command(
    exe: str,
    target_file: Path,
    sequence: str,
    name: str,
    num_runs: int,
    num_steps: int,
    workers: int,
    reference: Optional[Path] = None,
    mode: ClusterMode = ClusterMode.RMSD,
    contact_cutoff: float = 0.8,
) -> List[str]:
    cmd = [
        exe,
        "-t", str(Path(target_file).resolve()),
        "-s", sequence,
        "-N", str(num_runs),
        "-n", str(num_steps),
        "-o", name,
        "-c", str(workers),
    ]
    if reference is not None:
        cmd += ["-ref", str(Path(reference).resolve())]
    if mode is ClusterMode.CONTACT:
        cmd += ["-nc", f"{contact_cutoff:g}"]
    return cmd


def dock(
    exe: str,
    target_file: Path,
    sequence: str,
    out_dir: Path,
    name: str,
    num_runs: int,
    num_steps: int,
    workers: int = 1,
    reference: Optional[Path] = None,
    mode: ClusterMode = ClusterMode.RMSD,
    contact_cutoff: float = 0.8,
    cancel: Optional[CancelToken] = None,
) -> Tuple[Path, Path, List[PoseEntry]]:
    """
    Run one search replicate inside *out_dir*.

    Returns (summary path, multi-pose file, ranked entries). A non-zero exit
    or a missing summary/pose file raises ExternalToolFailure.
    """
    if mode is ClusterMode.CONTACT and reference is None:
        raise ValueError("contact-fraction clustering needs a reference pose")
    out_dir.mkdir(parents=True, exist_ok=True)
    cmd = build_command(need(exe), target_file, sequence, name, num_runs, num_steps,
                        workers, reference, mode, contact_cutoff)
    logger.info("Docking %s (%s clustering, reference=%s)", name, mode.value, reference)
    result = run_tool(cmd, cwd=out_dir, log_path=out_dir / f"{name}.adcp.log", cancel=cancel, stage=name)

    summary = out_dir / f"{name}_summary.dlg"
    if not summary.exists():
        summary.write_text(result.stdout)
    require_artifact(summary, result, stage=name)
    poses = require_artifact(out_dir / f"{name}_out.pdb", result, stage=name)
    try:
        entries = parse_summary(summary.read_text())
    except ExternalToolFailure as exc:
        raise exc.with_context(stage=name)
    return summary, poses, entries
