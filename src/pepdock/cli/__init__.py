"""
pepdock Command Line Interface
------------------------------
Command-line tools for running docking targets and the standalone
preparation steps (merge, split, protonate).
"""

from .main import cli

__all__ = ['cli']
