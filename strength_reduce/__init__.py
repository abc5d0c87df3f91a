from .core import (
    GraphOptimizer,
    RewriteResult,
    InvalidOperationShape,
    OpPattern,
    WildcardPattern,
    Op,
    Any,
    PassRegistry,
    OptimizationContext,
)
from .utils import (
    create_node,
    create_const_node,
    load_graph,
    save_graph,
)
from .runner import OptimizationPipeline
from .utils.logger import set_log_level, DEBUG, INFO, WARNING, ERROR

# Import transforms to register all passes
from . import transforms
from .transforms import PowStrengthReductionPass, populate_pow_strength_reduction

__version__ = "0.1.0"

__all__ = [
    "GraphOptimizer",
    "RewriteResult",
    "InvalidOperationShape",
    "OpPattern",
    "WildcardPattern",
    "Op",
    "Any",
    "PassRegistry",
    "OptimizationContext",
    "create_node",
    "create_const_node",
    "load_graph",
    "save_graph",
    "OptimizationPipeline",
    "PowStrengthReductionPass",
    "populate_pow_strength_reduction",
    "set_log_level",
    "DEBUG",
    "INFO",
    "WARNING",
    "ERROR",
]
