"""
File I/O utilities for sealed artifacts
"""
from pathlib import Path
import json


def safe_write_json(data, path):
    """Atomic JSON write"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix('.tmp')
    with open(temp_path, 'w') as f:
        json.dump(data, f, indent=2, default=str)
    temp_path.replace(path)
    return path


def read_json(path):
    """Read a JSON artifact with validation"""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"JSON artifact not found: {path}")
    return json.loads(path.read_text())
