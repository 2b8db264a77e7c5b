"""
Structure preparation: record parsing, complex assembly and histidine calls.
"""
from . import complex, protonation, records, target_prep

__all__ = ["complex", "protonation", "records", "target_prep"]
