"""
Transform Tests - 优化 Pass 测试模块
=====================================

tests/transforms/
└── scalar/
    ├── test_pow_strength_reduce.py          # 规则表、指数分类、改写结果
    └── test_pow_strength_reduce_numeric.py  # tf.Session 执行改写前后的图并比较结果
"""
