"""Shared pytest fixtures: synthetic coordinate records and fake external tools."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Sequence, Tuple

import pytest

from pepdock.config import load_config
from pepdock.physics.minimizer import EnergyVector


def atom_line(serial: int, name: str, resname: str, resseq: int,
              xyz: Tuple[float, float, float] = (0.0, 0.0, 0.0),
              chain: str = "A", record: str = "ATOM") -> str:
    """Format one fixed-width coordinate record."""
    padded = name if len(name) == 4 else f" {name:<3}"
    x, y, z = xyz
    return (f"{record:<6}{serial:>5} {padded} {resname:>3} {chain:1}{resseq:>4}    "
            f"{x:8.3f}{y:8.3f}{z:8.3f}{1.0:6.2f}{0.0:6.2f}           {name[0]}")


HIS_HEAVY = ["N", "CA", "C", "O", "CB", "CG", "ND1", "CD2", "CE1", "NE2"]


def residue(resname: str, resseq: int, names: Sequence[str], start: int = 1,
            chain: str = "A", offset: float = 0.0) -> List[str]:
    return [atom_line(start + i, name, resname, resseq, (offset + i, offset, 0.0), chain)
            for i, name in enumerate(names)]


@pytest.fixture
def make_residue() -> Callable[..., List[str]]:
    return residue


@pytest.fixture
def make_atom() -> Callable[..., str]:
    return atom_line


@pytest.fixture
def receptor_lines() -> List[str]:
    lines = ["HEADER    SYNTHETIC RECEPTOR", "REMARK   1 TEST"]
    lines += residue("ALA", 10, ["N", "CA", "C", "O", "CB"], start=1)
    lines += residue("HIS", 11, HIS_HEAVY + ["H", "HE2"], start=6, offset=5.0)
    lines += ["TER", "END"]
    return lines


@pytest.fixture
def peptide_lines() -> List[str]:
    """Peptide with residue 1 split around residue 2 (non-contiguous)."""
    lines = residue("GLY", 1, ["N", "CA"], start=1, chain="P", offset=20.0)
    lines += residue("HIS", 2, HIS_HEAVY, start=3, chain="P", offset=22.0)
    lines += residue("GLY", 1, ["C", "O"], start=13, chain="P", offset=30.0)
    lines += ["END"]
    return lines


@pytest.fixture
def receptor_pdb(tmp_path: Path, receptor_lines: List[str]) -> Path:
    path = tmp_path / "inputs" / "receptor.pdb"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(receptor_lines) + "\n")
    return path


@pytest.fixture
def peptide_pdb(tmp_path: Path, peptide_lines: List[str]) -> Path:
    path = tmp_path / "inputs" / "peptide.pdb"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(peptide_lines) + "\n")
    return path


@pytest.fixture
def target_file(tmp_path: Path) -> Path:
    path = tmp_path / "inputs" / "target.trg"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("synthetic target\n")
    return path


@pytest.fixture
def base_config(tmp_path: Path, target_file: Path):
    """Config with a ready target file so preparation is skipped."""

    def _build(**sections):
        data: Dict[str, object] = {
            "target": {"name": "demo", "sequence": "GH", "target_file": str(target_file)},
            "search": {"replicates": 2, "num_runs": 2, "num_steps": 100, "workers": 1},
            "run_root": str(tmp_path / "runs"),
        }
        data.update(sections)
        return load_config(data)

    return _build


def summary_text(rows: Sequence[Tuple[float, float]], contact: bool = False) -> str:
    """ADCP-style mode table; each row is (affinity, ref. rmsd or ref. fnc)."""
    metric = "fnc " if contact else "rmsd"
    lines = [
        "Clustering MC trajectories based in backbone CA and CB atoms",
        "mode |  affinity  | clust. | ref. | clust. | rmsd | energy | best |",
        f"     | (kcal/mol) | size   | {metric} | rmsd   | stdv |  stdv  | run  |",
        "-----+------------+--------+------+--------+------+--------+------+",
    ]
    for rank, (affinity, ref) in enumerate(rows, start=1):
        lines.append(f"{rank:>4}       {affinity:6.1f}     {20 - rank:>3}     {ref:5.3f}     NA     NA     NA    {rank:03d}")
    lines.append("")
    lines.append("Total time 12.0 sec")
    return "\n".join(lines) + "\n"


def pose_model_lines(offset: float) -> List[str]:
    lines = residue("GLY", 1, ["N", "CA", "C", "O"], start=1, chain="P", offset=offset)
    lines += residue("HIS", 2, HIS_HEAVY, start=5, chain="P", offset=offset + 4)
    return lines


class FakeDock:
    """Stand-in for the search tool; replays scripted summaries per call."""

    def __init__(self, scripted: Sequence[Tuple[Sequence[Tuple[float, float]], bool]]):
        self.scripted = list(scripted)
        self.calls: List[Dict[str, object]] = []

    def __call__(self, exe, target_file, sequence, out_dir, name, num_runs, num_steps,
                 workers=1, reference=None, mode=None, contact_cutoff=0.8, cancel=None):
        from pepdock.docking.adcp_wrapper import parse_summary

        rows, contact = self.scripted[len(self.calls)]
        self.calls.append({"name": name, "reference": reference, "mode": mode,
                           "contact_cutoff": contact_cutoff, "out_dir": out_dir})
        out_dir.mkdir(parents=True, exist_ok=True)
        summary = out_dir / f"{name}_summary.dlg"
        summary.write_text(summary_text(rows, contact=contact))
        poses = out_dir / f"{name}_out.pdb"
        model_lines: List[str] = []
        for i in range(len(rows)):
            model_lines += [f"MODEL {i + 1:>8}"] + pose_model_lines(10.0 * len(self.calls) + i) + ["ENDMDL"]
        poses.write_text("\n".join(model_lines) + "\n")
        return summary, poses, parse_summary(summary.read_text())


@pytest.fixture
def fake_dock_factory():
    return FakeDock


class FakeMinimizer:
    """Stand-in for the minimizer; peptide energies and drifts are scripted per call."""

    def __init__(self, peptide_energies: Sequence[float], drifts: Sequence[float]):
        self.peptide_energies = list(peptide_energies)
        self.drifts = list(drifts)
        self.calls: List[Dict[str, object]] = []

    def minimize(self, exe, target_file, pose, iterations, environment, workdir, name,
                 keep_intermediates=False, cancel=None):
        energy = self.peptide_energies[len(self.calls)]
        self.calls.append({"pose": Path(pose), "iterations": iterations,
                           "environment": environment, "name": name})
        workdir.mkdir(parents=True, exist_ok=True)
        out = workdir / f"{name}_min.pdb"
        out.write_text(Path(pose).read_text())
        return out, EnergyVector(complex=-100.0, receptor=-80.0, peptide=energy,
                                 interaction=-20.0, complex_minus_receptor=-20.0)

    def drift(self, before, after):
        return self.drifts[len(self.calls) - 1]


@pytest.fixture
def fake_minimizer_factory():
    return FakeMinimizer


@pytest.fixture
def pose_file(tmp_path: Path) -> Path:
    path = tmp_path / "selected.pdb"
    path.write_text("\n".join(pose_model_lines(0.0) + ["END"]) + "\n")
    return path
