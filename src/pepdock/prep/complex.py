"""Merge receptor and peptide record streams into one complex file, and back."""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from ..exceptions import MalformedRecordError
from .records import SEPARATOR, TERMINATOR, is_coordinate_record, is_separator, reorder_records


def _receptor_section(lines: Iterable[str]) -> List[str]:
    kept = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if is_coordinate_record(line) or is_separator(line):
            kept.append(line)
    while kept and is_separator(kept[-1]):
        kept.pop()
    return kept


def assemble_complex(receptor_lines: Iterable[str], ligand_lines: Iterable[str]) -> List[str]:
    """
    Build a complex record stream: receptor, TER, ligand, TER, END.

    The ligand goes through residue reordering so each residue is
    contiguous. A trailing separator already present on the receptor is not
    duplicated. Atoms and residues are never renumbered.
    """
    receptor = _receptor_section(receptor_lines)
    if not receptor:
        raise MalformedRecordError("receptor stream has no coordinate records")
    ligand = reorder_records(ligand_lines)
    if not ligand:
        raise MalformedRecordError("ligand stream has no coordinate records")
    return receptor + [SEPARATOR] + ligand + [SEPARATOR, TERMINATOR]


def split_complex(lines: Sequence[str]) -> Tuple[List[str], List[str]]:
    """
    Split an assembled complex into (receptor, ligand) coordinate records.

    The ligand sits between the last two separators; anything before them,
    including internal TERs of a multi-chain receptor, is the receptor.
    """
    stripped = [line.rstrip("\r\n") for line in lines]
    separators = [i for i, line in enumerate(stripped) if is_separator(line)]
    if len(separators) < 2:
        raise MalformedRecordError(
            f"complex needs a separator after the receptor and after the ligand, found {len(separators)}"
        )
    boundary, ligand_end = separators[-2], separators[-1]
    receptor = [line for line in stripped[:boundary]
                if is_coordinate_record(line) or is_separator(line)]
    ligand = [line for line in stripped[boundary + 1:ligand_end] if is_coordinate_record(line)]
    return receptor, ligand


def ligand_section(lines: Sequence[str]) -> List[str]:
    """Peptide records of a complex, or every coordinate record if it is not one."""
    stripped = [line.rstrip("\r\n") for line in lines]
    if sum(1 for line in stripped if is_separator(line)) >= 2:
        return split_complex(stripped)[1]
    return [line for line in stripped if is_coordinate_record(line)]
