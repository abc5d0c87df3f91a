"""
Framework Tests - 核心框架测试模块
===================================

- test_core.py           : 模式匹配、RewriteResult 处理、控制依赖、InvalidOperationShape 隔离
- test_infrastructure.py : OptimizationPipeline、配置合并、Pass 失败回滚、命令行
- test_logging.py        : 日志系统配置和级别控制
- test_pruning.py        : 死代码消除、引用计数、Placeholder/输出保留
"""
