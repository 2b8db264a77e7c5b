"""pepdock: peptide docking replicates with staged minimization."""
from importlib import metadata

try:
    __version__ = metadata.version("pepdock")
except metadata.PackageNotFoundError:  # pragma: no cover - source tree without install
    __version__ = "0.0.0"

__all__ = ["__version__"]
