"""LQR over scenario trees and hindsight iLQR."""

from . import autodiff, contracts, cost, dynamics, tree
from .__version__ import __version__
from .contracts import PreconditionError, SingularMatrixError
from .controller import iLQRSolver, RecedingHorizonController
from .hindsight import HindsightBranch, iLQRHindsightSolver
from .lqr import LQR
from .lqr_tree import LQRTree, PlanNode

__all__ = [
    "LQR", "LQRTree", "PlanNode", "iLQRSolver", "RecedingHorizonController",
    "HindsightBranch", "iLQRHindsightSolver", "PreconditionError",
    "SingularMatrixError", "autodiff", "contracts", "cost", "dynamics", "tree"
]
