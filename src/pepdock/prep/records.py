"""Fixed-width coordinate record parsing into per-residue blocks.

Column ranges are treated as a contract (1-based, inclusive):

    record tag      1-6
    atom name      13-16
    residue name   18-20
    residue number 23-26
    x / y / z      31-38 / 39-46 / 47-54
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..exceptions import MalformedRecordError

COORDINATE_RECORDS = ("ATOM", "HETATM")
SEPARATOR = "TER"
TERMINATOR = "END"


@dataclass(frozen=True)
class AtomRecord:
    """One coordinate record, kept with its raw text for lossless output."""

    resseq: int
    resname: str
    name: str
    coord: Tuple[float, float, float]
    index: int
    line: str


@dataclass(frozen=True)
class ResidueBlock:
    """Atoms sharing one residue sequence number, in parse order."""

    resseq: int
    atoms: Tuple[AtomRecord, ...]

    @property
    def resname(self) -> str:
        return self.atoms[0].resname if self.atoms else ""

    @property
    def atom_names(self) -> frozenset:
        return frozenset(atom.name for atom in self.atoms)

    def lines(self) -> List[str]:
        return [atom.line for atom in self.atoms]


def record_type(line: str) -> str:
    return line[0:6].strip()


def is_coordinate_record(line: str) -> bool:
    return record_type(line) in COORDINATE_RECORDS


def is_separator(line: str) -> bool:
    return record_type(line) == SEPARATOR


def parse_atom(line: str, index: int, line_number: Optional[int] = None) -> AtomRecord:
    """Parse a single ATOM/HETATM line."""
    resseq_field = line[22:26].strip()
    try:
        resseq = int(resseq_field)
    except ValueError:
        raise MalformedRecordError(
            f"residue number field {resseq_field!r} is not an integer",
            line_number=line_number,
        ) from None
    try:
        coord = (float(line[30:38]), float(line[38:46]), float(line[46:54]))
    except ValueError:
        raise MalformedRecordError(
            f"coordinate fields {line[30:54]!r} are not numeric",
            line_number=line_number,
        ) from None
    return AtomRecord(
        resseq=resseq,
        resname=line[17:20].strip(),
        name=line[12:16].strip(),
        coord=coord,
        index=index,
        line=line,
    )


def parse_atoms(lines: Iterable[str]) -> List[AtomRecord]:
    """Parse every coordinate record in *lines*, ignoring all other records."""
    atoms: List[AtomRecord] = []
    for line_number, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n")
        if not is_coordinate_record(line):
            continue
        atoms.append(parse_atom(line, len(atoms), line_number))
    return atoms


def parse_blocks(lines: Iterable[str]) -> List[ResidueBlock]:
    """
    Group coordinate records into residue blocks.

    Blocks come out in first-seen residue order. A residue number that shows
    up again after other residues is merged into its first block, so
    downstream tools always see each residue contiguously.

    Raises
    ------
    MalformedRecordError
        On an unparseable residue number or coordinate, or when an atom name
        repeats within one residue.
    """
    grouped: Dict[int, List[AtomRecord]] = {}
    seen_names: Dict[int, set] = {}
    index = 0
    for line_number, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n")
        if not is_coordinate_record(line):
            continue
        atom = parse_atom(line, index, line_number)
        index += 1
        names = seen_names.setdefault(atom.resseq, set())
        if atom.name in names:
            raise MalformedRecordError(
                f"duplicate atom name {atom.name!r} in residue {atom.resseq}",
                line_number=line_number,
            )
        names.add(atom.name)
        grouped.setdefault(atom.resseq, []).append(atom)
    return [ResidueBlock(resseq=resseq, atoms=tuple(atoms)) for resseq, atoms in grouped.items()]


def flatten_blocks(blocks: Sequence[ResidueBlock]) -> List[str]:
    """Return the raw record lines of *blocks* in block order."""
    return [line for block in blocks for line in block.lines()]


def reorder_records(lines: Iterable[str]) -> List[str]:
    """Coordinate records of *lines*, made contiguous per residue."""
    return flatten_blocks(parse_blocks(lines))


def coordinate_lines(lines: Iterable[str]) -> List[str]:
    return [line.rstrip("\r\n") for line in lines if is_coordinate_record(line)]


def extract_model(lines: Sequence[str], model: int = 1) -> List[str]:
    """
    Pull one model out of a multi-model file (1-based).

    Files without MODEL records are treated as a single model.
    """
    stripped = [line.rstrip("\r\n") for line in lines]
    if not any(record_type(line) == "MODEL" for line in stripped):
        if model != 1:
            raise MalformedRecordError(f"model {model} requested from a single-model file")
        return [line for line in stripped if record_type(line) not in ("MODEL", "ENDMDL")]

    current = 0
    inside = False
    selected: List[str] = []
    for line in stripped:
        tag = record_type(line)
        if tag == "MODEL":
            current += 1
            inside = current == model
            continue
        if tag == "ENDMDL":
            if inside:
                break
            continue
        if inside:
            selected.append(line)
    if not selected:
        raise MalformedRecordError(f"model {model} not found")
    return selected


def read_records(path: Union[str, Path]) -> List[str]:
    """Read a coordinate file as a list of lines without line endings."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Coordinate file not found: {path}")
    return path.read_text().splitlines()


def write_records(path: Union[str, Path], lines: Iterable[str]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    return path
