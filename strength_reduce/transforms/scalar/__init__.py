"""
Scalar Transforms - 标量/局部优化
==================================

对单个节点进行局部变换（peephole），不改变计算的并行度。
类似 LLVM/MLIR 的 InstCombine、AlgebraicSimplification。

包含的 Pass：
- pow_strength_reduce.py : Pow 强度削减（常量指数 1/2/3/-1 → 乘法/除法）
"""

from .pow_strength_reduce import (
    PowStrengthReductionPass,
    populate_pow_strength_reduction,
)

__all__ = [
    'PowStrengthReductionPass',
    'populate_pow_strength_reduction',
]
