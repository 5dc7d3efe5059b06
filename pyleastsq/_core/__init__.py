"""
Core algorithms (optimizer-agnostic).
"""

from .evaluation import ArrayEvaluation, Evaluation, LazyEvaluation
from .incrementor import Incrementor
from .qr import (
    QRDecomposition,
    determine_lm_direction,
    q_transpose_y,
    qr_decomposition_with_pivoting,
)

__all__ = [
    "Evaluation",
    "ArrayEvaluation",
    "LazyEvaluation",
    "Incrementor",
    "QRDecomposition",
    "qr_decomposition_with_pivoting",
    "q_transpose_y",
    "determine_lm_direction",
]
