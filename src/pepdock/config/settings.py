"""Run configuration for one docking target."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from ..exceptions import ConfigError

#: Environments in increasing fidelity order
ENVIRONMENTS: Tuple[str, ...] = ("vacuum", "implicit")
_ENVIRONMENT_ALIASES = {"solvent": "implicit", "gb": "implicit"}


def normalize_environment(name: str) -> str:
    env = _ENVIRONMENT_ALIASES.get(str(name).lower(), str(name).lower())
    if env not in ENVIRONMENTS:
        raise ConfigError(f"Unknown minimization environment {name!r}; expected one of {ENVIRONMENTS}")
    return env


def fidelity(environment: str) -> int:
    return ENVIRONMENTS.index(normalize_environment(environment))


@dataclass(frozen=True)
class ToolPaths:
    """Executables of the external collaborators."""

    adcp: str = "adcp"
    minimizer: str = "adcp_minimize"
    reduce: str = "reduce"
    prepare_receptor: str = "prepare_receptor"
    prepare_ligand: str = "prepare_ligand"
    agfr: str = "agfr"


@dataclass(frozen=True)
class TargetSettings:
    """What to dock: either raw structures to prepare or a ready target file."""

    name: str
    sequence: str
    receptor_pdb: Optional[Path] = None
    peptide_pdb: Optional[Path] = None
    target_file: Optional[Path] = None
    seed_reference: Optional[Path] = None


@dataclass(frozen=True)
class SearchSettings:
    replicates: int = 2
    num_runs: int = 20
    num_steps: int = 1_000_000
    workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    contact_cutoff: float = 0.8
    strict_ties: bool = False
    resume: bool = False


@dataclass(frozen=True)
class ProtonationSettings:
    flip: Optional[bool] = None
    strict: bool = False
    labels: Tuple[str, ...] = ("HIS",)


@dataclass(frozen=True)
class StageSpec:
    iterations: int
    environment: str = "vacuum"

    @property
    def name(self) -> str:
        return f"{self.environment}_{self.iterations}"


DEFAULT_STAGES: Tuple[StageSpec, ...] = (
    StageSpec(100, "vacuum"),
    StageSpec(1000, "vacuum"),
    StageSpec(5000, "vacuum"),
    StageSpec(100, "implicit"),
    StageSpec(1000, "implicit"),
    StageSpec(5000, "implicit"),
)


@dataclass(frozen=True)
class MinimizationSettings:
    stages: Tuple[StageSpec, ...] = DEFAULT_STAGES
    relative_threshold: float = 0.01
    max_drift: float = 2.0
    stable_window: int = 2
    keep_intermediates: bool = False


@dataclass(frozen=True)
class PepdockConfig:
    """Root configuration; passed explicitly to every component."""

    target: TargetSettings
    tools: ToolPaths = field(default_factory=ToolPaths)
    search: SearchSettings = field(default_factory=SearchSettings)
    protonation: ProtonationSettings = field(default_factory=ProtonationSettings)
    minimization: MinimizationSettings = field(default_factory=MinimizationSettings)
    run_root: Path = Path("runs")

    @property
    def workdir(self) -> Path:
        return self.run_root / self.target.name

    def with_run_root(self, run_root: Path) -> "PepdockConfig":
        return replace(self, run_root=Path(run_root))


def _coerce_mapping(config: Any, *, source: str) -> Mapping[str, Any]:
    if isinstance(config, Mapping):
        return config
    raise ConfigError(f"Expected mapping for {source}, got {type(config)!r}")


def _optional_path(value: Any, base: Path) -> Optional[Path]:
    if value in (None, ""):
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else (base / path)


def _check_range(name: str, value, minimum, maximum=None):
    if value < minimum or (maximum is not None and value > maximum):
        bound = f"[{minimum}, {maximum}]" if maximum is not None else f">= {minimum}"
        raise ConfigError(f"{name}={value} is out of range {bound}")
    return value


def _as_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be true or false, got {value!r}")
    return value


def _as_labels(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ConfigError(f"protonation.labels must be a list of residue names, got {value!r}")
    labels = tuple(str(label).strip().upper() for label in value)
    if not labels or any(len(label) != 3 for label in labels):
        raise ConfigError(f"protonation.labels must hold three-letter residue names, got {value!r}")
    return labels


def _build_target(raw: Mapping[str, Any], base: Path) -> TargetSettings:
    try:
        name = str(raw["name"])
        sequence = str(raw["sequence"]).strip()
    except KeyError as error:
        raise ConfigError(f"target section missing required key: {error.args[0]}") from None
    if not sequence.isalpha():
        raise ConfigError(f"target.sequence must be a one-letter peptide sequence, got {sequence!r}")

    target = TargetSettings(
        name=name,
        sequence=sequence,
        receptor_pdb=_optional_path(raw.get("receptor_pdb"), base),
        peptide_pdb=_optional_path(raw.get("peptide_pdb"), base),
        target_file=_optional_path(raw.get("target_file"), base),
        seed_reference=_optional_path(raw.get("seed_reference"), base),
    )
    if target.target_file is None and (target.receptor_pdb is None or target.peptide_pdb is None):
        raise ConfigError("target needs either target_file or both receptor_pdb and peptide_pdb")
    return target


def _build_search(raw: Mapping[str, Any]) -> SearchSettings:
    defaults = SearchSettings()
    search = SearchSettings(
        replicates=int(raw.get("replicates", defaults.replicates)),
        num_runs=int(raw.get("num_runs", defaults.num_runs)),
        num_steps=int(raw.get("num_steps", defaults.num_steps)),
        workers=int(raw.get("workers", defaults.workers)),
        contact_cutoff=float(raw.get("contact_cutoff", defaults.contact_cutoff)),
        strict_ties=_as_bool("search.strict_ties", raw.get("strict_ties", defaults.strict_ties)),
        resume=_as_bool("search.resume", raw.get("resume", defaults.resume)),
    )
    _check_range("search.replicates", search.replicates, 2)
    _check_range("search.num_runs", search.num_runs, 1)
    _check_range("search.num_steps", search.num_steps, 1)
    _check_range("search.workers", search.workers, 1)
    _check_range("search.contact_cutoff", search.contact_cutoff, 0.0, 1.0)
    return search


def _build_minimization(raw: Mapping[str, Any]) -> MinimizationSettings:
    defaults = MinimizationSettings()
    stages_raw = raw.get("stages")
    if stages_raw:
        stages = tuple(
            StageSpec(iterations=int(item["iterations"]),
                      environment=normalize_environment(item.get("environment", "vacuum")))
            for item in stages_raw
        )
    else:
        stages = defaults.stages
    for stage in stages:
        _check_range(f"minimization stage {stage.name} iterations", stage.iterations, 1)
    levels = [fidelity(stage.environment) for stage in stages]
    if levels != sorted(levels):
        raise ConfigError("minimization stages must not step down in environment fidelity")

    settings = MinimizationSettings(
        stages=stages,
        relative_threshold=float(raw.get("relative_threshold", defaults.relative_threshold)),
        max_drift=float(raw.get("max_drift", defaults.max_drift)),
        stable_window=int(raw.get("stable_window", defaults.stable_window)),
        keep_intermediates=_as_bool("minimization.keep_intermediates",
                                    raw.get("keep_intermediates", defaults.keep_intermediates)),
    )
    _check_range("minimization.relative_threshold", settings.relative_threshold, 0.0)
    _check_range("minimization.max_drift", settings.max_drift, 0.0)
    _check_range("minimization.stable_window", settings.stable_window, 1)
    return settings


def load_config(source: Optional[Any] = None, **overrides: Any) -> PepdockConfig:
    """Load a run config from a YAML file, a mapping, or kwargs."""

    data: Dict[str, Any] = {}
    base = Path.cwd()

    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"pepdock config not found: {path}")
        data = yaml.safe_load(path.read_text()) or {}
        base = path.resolve().parent
    elif source is not None:
        data = dict(_coerce_mapping(source, source="config"))

    if overrides:
        data.update(overrides)

    if "target" not in data:
        raise ConfigError("pepdock config missing required section: target")

    tools_raw = dict(_coerce_mapping(data.get("tools", {}) or {}, source="tools"))
    unknown = set(tools_raw) - set(ToolPaths.__dataclass_fields__)
    if unknown:
        raise ConfigError(f"Unknown tool entries: {sorted(unknown)}")

    prot_raw = _coerce_mapping(data.get("protonation", {}) or {}, source="protonation")
    flip = prot_raw.get("flip")
    protonation = ProtonationSettings(
        flip=None if flip is None else _as_bool("protonation.flip", flip),
        strict=_as_bool("protonation.strict", prot_raw.get("strict", False)),
        labels=_as_labels(prot_raw.get("labels", ["HIS"])),
    )

    return PepdockConfig(
        target=_build_target(_coerce_mapping(data["target"], source="target"), base),
        tools=ToolPaths(**{key: str(value) for key, value in tools_raw.items()}),
        search=_build_search(_coerce_mapping(data.get("search", {}) or {}, source="search")),
        protonation=protonation,
        minimization=_build_minimization(_coerce_mapping(data.get("minimization", {}) or {}, source="minimization")),
        run_root=_optional_path(data.get("run_root", "runs"), base),
    )
