"""
Photo Tidy

Organizes photo and video libraries: inventories a source tree, detects
byte-identical duplicates, plans a date-based layout and applies it with a
journaled, undoable copy or move.
"""

__version__ = "1.0.0"
__author__ = "Homelab Team"

from .config import Config, TidyContext
from .errors import Cancelled, DryRunViolation, HashMismatch, PathCollision, StoreError, TidyError
from .executor import ExecutionEngine
from .models import ExecutionMode
from .planner import Planner
from .progress import CancellationToken, ProgressEmitter, TqdmProgress
from .reporter import TidyReporter
from .scanner import MediaScanner
from .store import Store
from .undo import UndoEngine
from .workflow import PhotoTidy

__all__ = [
    'Config',
    'TidyContext',
    'Store',
    'MediaScanner',
    'Planner',
    'ExecutionEngine',
    'UndoEngine',
    'PhotoTidy',
    'TidyReporter',
    'ExecutionMode',
    'ProgressEmitter',
    'CancellationToken',
    'TqdmProgress',
    'TidyError',
    'StoreError',
    'HashMismatch',
    'PathCollision',
    'Cancelled',
    'DryRunViolation',
]
