"""
Graph Optimization Transforms
=============================

按照 LLVM 风格组织的图优化 Pass 集合。

目录结构：
transforms/
└── scalar/              # 标量/局部优化
    └── pow_strength_reduce.py   # Pow 强度削减

Pass 执行顺序（按 priority）：
1. pow_strength_reduction (priority=7) - 常量指数的 Pow 改写为乘除法
"""

# Scalar transforms
from .scalar import (
    PowStrengthReductionPass,
    populate_pow_strength_reduction,
)

__all__ = [
    'PowStrengthReductionPass',
    'populate_pow_strength_reduction',
]
