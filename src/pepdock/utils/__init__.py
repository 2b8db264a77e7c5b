"""
pepdock Utilities Module
"""
from .file_io import *
from .run_dirs import *
from .toolchain import *

__all__ = ['file_io', 'run_dirs', 'toolchain']
