"""Wrapper for the external pose minimizer and its energy report."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np

from ..exceptions import ExternalToolFailure, MalformedRecordError
from ..prep.complex import ligand_section
from ..prep.records import parse_atoms, read_records
from ..utils.toolchain import CancelToken, need, require_artifact, run_tool

logger = logging.getLogger(__name__)

# Energy labels as printed by the minimizer -> EnergyVector fields
ENERGY_LABELS = {
    "E_Complex": "complex",
    "E_Receptor": "receptor",
    "E_Peptide": "peptide",
    "dE_Interaction": "interaction",
    "dE_Complex-Receptor": "complex_minus_receptor",
}
_ENERGY_RE = re.compile(
    r"(E_Complex|E_Receptor|E_Peptide|dE_Interaction|dE_Complex-Receptor)\s*[:=]?\s*(-?\d+(?:\.\d*)?(?:[eE][-+]?\d+)?)"
)


@dataclass(frozen=True)
class EnergyVector:
    """Energy terms of one minimized pose (kcal/mol)."""

    complex: float
    receptor: float
    peptide: float
    interaction: float
    complex_minus_receptor: float

    def to_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "EnergyVector":
        return cls(**{f.name: float(data[f.name]) for f in fields(cls)})


def parse_energies(text: str) -> Optional[EnergyVector]:
    """
    Read the five energy terms from minimizer output or REMARK lines.

    When a term is reported more than once (one line per iteration block),
    the last value wins. Returns None unless all five terms are present.
    """
    found: Dict[str, float] = {}
    for label, value in _ENERGY_RE.findall(text):
        found[ENERGY_LABELS[label]] = float(value)
    if len(found) != len(ENERGY_LABELS):
        return None
    return EnergyVector(**found)


def peptide_coordinates(path: Path) -> Dict[Tuple[int, str], np.ndarray]:
    """Peptide atom coordinates keyed by (residue number, atom name)."""
    atoms = parse_atoms(ligand_section(read_records(path)))
    return {(atom.resseq, atom.name): np.asarray(atom.coord, dtype=float) for atom in atoms}


def coordinate_drift(before: Path, after: Path) -> float:
    """
    RMSD (Å) between the peptide atoms shared by two poses, without fitting.

    Atoms are matched on residue number and atom name, so a relabelled
    histidine still lines up with its input.
    """
    start = peptide_coordinates(before)
    end = peptide_coordinates(after)
    shared = [key for key in start if key in end]
    if not shared:
        raise MalformedRecordError(f"no common peptide atoms between {before} and {after}")
    a = np.stack([start[key] for key in shared])
    b = np.stack([end[key] for key in shared])
    return float(np.sqrt(((a - b) ** 2).sum(axis=1).mean()))


def minimize(
    exe: str,
    target_file: Path,
    pose: Path,
    iterations: int,
    environment: str,
    workdir: Path,
    name: str,
    keep_intermediates: bool = False,
    cancel: Optional[CancelToken] = None,
) -> Tuple[Path, EnergyVector]:
    """Run one minimization; returns the rescored pose and its energies."""
    workdir.mkdir(parents=True, exist_ok=True)
    cmd = [
        need(exe),
        "-t", str(Path(target_file).resolve()),
        "-i", str(Path(pose).resolve()),
        "-nitr", str(iterations),
        "-env", environment,
        "-w", str(workdir.resolve()),
        "-o", name,
    ]
    if keep_intermediates:
        cmd.append("-k")
    result = run_tool(cmd, cwd=workdir, log_path=workdir / f"{name}.minimize.log",
                      cancel=cancel, stage=name)
    out_pose = require_artifact(workdir / f"{name}_min.pdb", result, stage=name)

    energies = parse_energies(result.stdout) or parse_energies(out_pose.read_text())
    if energies is None:
        raise ExternalToolFailure(
            f"Minimizer reported no complete energy vector for {name}",
            command=result.command, returncode=result.returncode,
            stdout=result.stdout, stderr=result.stderr, stage=name,
        )
    return out_pose, energies
