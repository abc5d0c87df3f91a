"""
Strength Reduce Test Suite
==========================

测试模块组织：

tests/
├── framework/           # 核心框架测试
│   ├── test_core.py              # 引擎：模式匹配、RewriteResult、宿主服务
│   ├── test_infrastructure.py    # Pipeline、配置、回滚、CLI
│   ├── test_logging.py           # 日志系统测试
│   └── test_pruning.py           # 引用计数与死节点裁剪
│
└── transforms/          # 优化 Pass 测试
    └── scalar/
        ├── test_pow_strength_reduce.py          # Pow 强度削减规则
        └── test_pow_strength_reduce_numeric.py  # 改写前后数值一致性

运行测试：
    python -m pytest tests/ -v
"""
