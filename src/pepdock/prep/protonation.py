"""Histidine tautomer/protonation assignment from hydrogen atom names.

The protonation tool adds hydrogens but leaves every histidine labelled
``HIS``. The call here only looks at which of the two ring hydrogens made it
into the residue:

    HE2 only        -> HIE
    HE2 and HD1     -> HIP
    anything else   -> HID
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..exceptions import MalformedRecordError
from .records import is_coordinate_record, parse_blocks

logger = logging.getLogger(__name__)

DELTA_HYDROGEN = "HD1"
EPSILON_HYDROGEN = "HE2"
UNASSIGNED_LABELS = ("HIS",)

#: (chain id, residue number)
ResidueKey = Tuple[str, int]


class ProtonationCall(str, Enum):
    HID = "HID"
    HIE = "HIE"
    HIP = "HIP"


def classify_histidine(atom_names: Iterable[str], *, strict: bool = False,
                       delta_hydrogen: str = DELTA_HYDROGEN,
                       epsilon_hydrogen: str = EPSILON_HYDROGEN) -> ProtonationCall:
    """
    Classify one histidine from the set of its atom names.

    With ``strict=True`` a residue carrying neither ring hydrogen raises
    :class:`MalformedRecordError` instead of defaulting to HID.
    """
    names = set(atom_names)
    has_delta = delta_hydrogen in names
    has_epsilon = epsilon_hydrogen in names
    if has_epsilon and not has_delta:
        return ProtonationCall.HIE
    if has_epsilon and has_delta:
        return ProtonationCall.HIP
    if not has_delta and strict:
        raise MalformedRecordError(
            f"histidine carries neither {delta_hydrogen} nor {epsilon_hydrogen}"
        )
    return ProtonationCall.HID


def _relabel(line: str, resname: str) -> str:
    return f"{line[:17]}{resname:>3}{line[20:]}"


def _chain_id(line: str) -> str:
    return line[21:22].strip()


def _by_chain(lines: Iterable[str]) -> Dict[str, List[str]]:
    chains: Dict[str, List[str]] = {}
    for line in lines:
        if is_coordinate_record(line):
            chains.setdefault(_chain_id(line), []).append(line)
    return chains


def assign_calls(lines: Sequence[str], *, labels: Sequence[str] = UNASSIGNED_LABELS,
                 strict: bool = False) -> Dict[ResidueKey, ProtonationCall]:
    """
    Return {(chain, residue number): call} for every unassigned histidine.

    Residue blocks are built per chain so receptors whose chains reuse
    residue numbers still parse.
    """
    calls: Dict[ResidueKey, ProtonationCall] = {}
    for chain, chain_lines in _by_chain(line.rstrip("\r\n") for line in lines).items():
        for block in parse_blocks(chain_lines):
            if block.resname not in labels:
                continue
            try:
                call = classify_histidine(block.atom_names, strict=strict)
            except MalformedRecordError as exc:
                raise MalformedRecordError(f"residue {chain}{block.resseq}: {exc.message}") from exc
            if DELTA_HYDROGEN not in block.atom_names and call is ProtonationCall.HID:
                logger.debug("Residue %s%s has no ring hydrogens; defaulting to HID", chain, block.resseq)
            calls[(chain, block.resseq)] = call
    return calls


def assign_protonation(lines: Sequence[str], *, labels: Sequence[str] = UNASSIGNED_LABELS,
                       strict: bool = False,
                       calls: Optional[Dict[ResidueKey, ProtonationCall]] = None) -> List[str]:
    """
    Rewrite the residue name of every unassigned histidine with its call.

    All other records, including non-coordinate ones, pass through
    untouched and in their original order. Running it twice changes nothing.
    """
    stripped = [line.rstrip("\r\n") for line in lines]
    if calls is None:
        calls = assign_calls(stripped, labels=labels, strict=strict)
    if not calls:
        return stripped

    relabelled: List[str] = []
    for line in stripped:
        if is_coordinate_record(line) and line[17:20].strip() in labels:
            call = calls.get((_chain_id(line), int(line[22:26])))
            if call is not None:
                line = _relabel(line, call.value)
        relabelled.append(line)
    return relabelled


def summarize_calls(calls: Dict[ResidueKey, ProtonationCall]) -> Dict[str, int]:
    """Count calls per state, e.g. {'HID': 2, 'HIE': 1, 'HIP': 0}."""
    summary = {state.value: 0 for state in ProtonationCall}
    for call in calls.values():
        summary[call.value] += 1
    return summary
