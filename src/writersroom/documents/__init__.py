"""Document mutations and fuzzy diff application."""

from .diff_worker import DiffWorker
from .mutations import MutationApplier, MutationResult

__all__ = ["DiffWorker", "MutationApplier", "MutationResult"]
