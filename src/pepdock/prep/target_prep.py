"""
Receptor/peptide preparation ahead of the docking replicates.

The two structures are merged, protonated together, split again, and each
half gets its histidine calls independently before the receptor, ligand and
target files are generated:

    receptor.pdb + peptide.pdb
        -> complex.pdb -> reduce -> complex_H.pdb
        -> receptor_H.pdb / peptide_H.pdb  (HIS -> HID/HIE/HIP)
        -> prepare_receptor / prepare_ligand -> *.pdbqt
        -> agfr -> <target>.trg
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from ..config import PepdockConfig
from ..utils.toolchain import CancelToken, need, require_artifact, run_tool
from .complex import assemble_complex, split_complex
from .protonation import (
    UNASSIGNED_LABELS,
    ProtonationCall,
    ResidueKey,
    assign_calls,
    assign_protonation,
    summarize_calls,
)
from .records import read_records, write_records

logger = logging.getLogger(__name__)

# reduce exits 1/2 when it modified the structure; output is still valid
REDUCE_OK_CODES = (0, 1, 2)


@dataclass
class PreparedTarget:
    """Artifacts of the preparation stage."""

    target_file: Path
    receptor_pdb: Optional[Path] = None
    peptide_pdb: Optional[Path] = None
    receptor_pdbqt: Optional[Path] = None
    peptide_pdbqt: Optional[Path] = None
    receptor_calls: Dict[ResidueKey, ProtonationCall] = field(default_factory=dict)
    peptide_calls: Dict[ResidueKey, ProtonationCall] = field(default_factory=dict)

    def summary(self) -> Dict[str, object]:
        return {
            "target_file": str(self.target_file),
            "receptor_pdb": str(self.receptor_pdb) if self.receptor_pdb else None,
            "peptide_pdb": str(self.peptide_pdb) if self.peptide_pdb else None,
            "receptor_histidines": summarize_calls(self.receptor_calls),
            "peptide_histidines": summarize_calls(self.peptide_calls),
        }


def reduce_structure(exe: str, inp_pdb: Path, out_pdb: Path, flip: Optional[bool] = None,
                     cancel: Optional[CancelToken] = None) -> Path:
    """Add hydrogens with reduce; stdout is the protonated structure."""
    cmd = [need(exe)]
    if flip is True:
        cmd.append("-FLIP")
    elif flip is False:
        cmd.append("-NOFLIP")
    cmd.append(str(inp_pdb))
    result = run_tool(cmd, log_path=out_pdb.with_suffix(".reduce.log"), cancel=cancel,
                      ok_codes=REDUCE_OK_CODES, stage="protonation")
    out_pdb.write_text(result.stdout)
    return require_artifact(out_pdb, result, stage="protonation")


def prepare_receptor(exe: str, inp_pdb: Path, cancel: Optional[CancelToken] = None) -> Path:
    out = inp_pdb.with_suffix(".pdbqt")
    result = run_tool([need(exe), "-r", inp_pdb.name, "-o", out.name], cwd=inp_pdb.parent,
                      log_path=inp_pdb.with_suffix(".prepare_receptor.log"), cancel=cancel,
                      stage="prepare_receptor")
    return require_artifact(out, result, stage="prepare_receptor")


def prepare_ligand(exe: str, inp_pdb: Path, cancel: Optional[CancelToken] = None) -> Path:
    out = inp_pdb.with_suffix(".pdbqt")
    result = run_tool([need(exe), "-l", inp_pdb.name, "-o", out.name], cwd=inp_pdb.parent,
                      log_path=inp_pdb.with_suffix(".prepare_ligand.log"), cancel=cancel,
                      stage="prepare_ligand")
    return require_artifact(out, result, stage="prepare_ligand")


def generate_target(exe: str, receptor_pdbqt: Path, ligand_pdbqt: Path, name: str,
                    cancel: Optional[CancelToken] = None) -> Path:
    """Build the docking target file (affinity maps + pocket) with agfr."""
    out_dir = receptor_pdbqt.parent
    result = run_tool([need(exe), "-r", receptor_pdbqt.name, "-l", ligand_pdbqt.name, "-o", name],
                      cwd=out_dir, log_path=out_dir / "agfr.log", cancel=cancel, stage="agfr")
    return require_artifact(out_dir / f"{name}.trg", result, stage="agfr")


def protonate_structures(
    receptor_pdb: Path,
    peptide_pdb: Path,
    out_dir: Path,
    *,
    reduce_exe: str = "reduce",
    flip: Optional[bool] = None,
    labels: Sequence[str] = UNASSIGNED_LABELS,
    strict: bool = False,
    cancel: Optional[CancelToken] = None,
) -> Tuple[Path, Path, Dict[ResidueKey, ProtonationCall], Dict[ResidueKey, ProtonationCall]]:
    """
    Merge, protonate, split and relabel histidines.

    Returns (receptor_H.pdb, peptide_H.pdb, receptor calls, peptide calls).
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    complex_lines = assemble_complex(read_records(receptor_pdb), read_records(peptide_pdb))
    complex_pdb = write_records(out_dir / "complex.pdb", complex_lines)

    protonated = reduce_structure(reduce_exe, complex_pdb, out_dir / "complex_H.pdb",
                                  flip=flip, cancel=cancel)
    receptor_lines, peptide_lines = split_complex(read_records(protonated))

    receptor_calls = assign_calls(receptor_lines, labels=labels, strict=strict)
    peptide_calls = assign_calls(peptide_lines, labels=labels, strict=strict)
    receptor_out = write_records(
        out_dir / "receptor_H.pdb",
        assign_protonation(receptor_lines, labels=labels, calls=receptor_calls) + ["END"],
    )
    peptide_out = write_records(
        out_dir / "peptide_H.pdb",
        assign_protonation(peptide_lines, labels=labels, calls=peptide_calls) + ["END"],
    )
    logger.info("Histidine calls: receptor=%s peptide=%s",
                summarize_calls(receptor_calls), summarize_calls(peptide_calls))
    return receptor_out, peptide_out, receptor_calls, peptide_calls


def protonate_complex(config: PepdockConfig, prep_dir: Path,
                      cancel: Optional[CancelToken] = None) -> PreparedTarget:
    """Protonation half of the preparation stage. No target file yet."""
    target = config.target
    receptor_pdb, peptide_pdb, receptor_calls, peptide_calls = protonate_structures(
        target.receptor_pdb,
        target.peptide_pdb,
        prep_dir,
        reduce_exe=config.tools.reduce,
        flip=config.protonation.flip,
        labels=config.protonation.labels,
        strict=config.protonation.strict,
        cancel=cancel,
    )
    return PreparedTarget(
        target_file=prep_dir / f"{target.name}.trg",
        receptor_pdb=receptor_pdb,
        peptide_pdb=peptide_pdb,
        receptor_calls=receptor_calls,
        peptide_calls=peptide_calls,
    )


def prepare_target(config: PepdockConfig, prep_dir: Path,
                   cancel: Optional[CancelToken] = None) -> PreparedTarget:
    """Run the whole preparation stage, or reuse a configured target file."""
    target = config.target
    if target.target_file is not None:
        logger.info("Using provided target file %s", target.target_file)
        return PreparedTarget(target_file=require_artifact(Path(target.target_file), stage="prep"))

    prepared = protonate_complex(config, prep_dir, cancel=cancel)
    prepared.receptor_pdbqt = prepare_receptor(config.tools.prepare_receptor, prepared.receptor_pdb, cancel)
    prepared.peptide_pdbqt = prepare_ligand(config.tools.prepare_ligand, prepared.peptide_pdb, cancel)
    prepared.target_file = generate_target(config.tools.agfr, prepared.receptor_pdbqt,
                                           prepared.peptide_pdbqt, target.name, cancel)
    logger.info("Target preparation complete -> %s", prepared.target_file)
    return prepared
