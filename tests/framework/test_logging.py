"""
Logging Tests - 日志系统测试
=============================

测试内容：
1. test_logger_setup          - Logger 创建和 handler 配置
2. test_set_log_level         - 动态日志级别切换（DEBUG/INFO）
3. test_trace_transformation  - 改写命中时输出 INFO，带 Pass 名前缀
4. test_optimize_logs_summary - optimize() 开始/结束日志
5. test_file_handler          - 日志同时写入文件
"""

import os
import logging
import tempfile
import unittest
import tensorflow.compat.v1 as tf

from strength_reduce.core import GraphOptimizer, MatchContext
from strength_reduce.transforms.scalar import PowStrengthReductionPass
from strength_reduce.utils import create_node, create_const_node
from strength_reduce.utils.logger import (
    add_file_handler,
    get_logger,
    remove_file_handlers,
    set_log_level,
    trace_transformation,
    INFO,
    DEBUG,
)

tf.disable_v2_behavior()


class TestLogging(unittest.TestCase):
    """日志系统测试套件。"""

    def tearDown(self):
        set_log_level(INFO)

    def test_logger_setup(self):
        logger = get_logger("TestLogger")
        self.assertEqual(logger.name, "TestLogger")
        self.assertTrue(len(logger.handlers) >= 1)

    def test_set_log_level(self):
        set_log_level(DEBUG)
        from strength_reduce.utils.logger import logger as global_logger

        self.assertEqual(global_logger.level, DEBUG)
        set_log_level(INFO)
        self.assertEqual(global_logger.level, INFO)

    def test_file_handler(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "run.log")
            add_file_handler(path)
            get_logger().warning("written to file")
            remove_file_handlers()
            with open(path) as f:
                self.assertIn("[WARNING] - StrengthReduce", f.read())
        self.assertFalse(
            any(isinstance(h, logging.FileHandler) for h in get_logger().handlers)
        )

    def test_trace_transformation(self):
        optimizer = GraphOptimizer(tf.GraphDef())
        optimizer.current_pass_name = "demo"
        match = MatchContext()
        match.matched_nodes["root"] = create_node("Pow", "p")

        def produce(m, o):
            return [create_node("Mul", "p")]

        def decline(m, o):
            return None

        with self.assertLogs("StrengthReduce", level="INFO") as logs:
            trace_transformation(produce)(match, optimizer)
        self.assertIn("[demo] Rewriter produce matched at p, generated 1 nodes", logs.output[0])

        set_log_level(DEBUG)
        with self.assertLogs("StrengthReduce", level="DEBUG") as logs:
            self.assertIsNone(trace_transformation(decline)(match, optimizer))
        self.assertIn("Rewriter decline returned None", logs.output[0])

    def test_optimize_logs_summary(self):
        graph = tf.GraphDef()
        graph.node.extend(
            [
                create_node("Placeholder", "x"),
                create_const_node("c", value=2.0, dtype="float32"),
                create_node("Pow", "pow", inputs=["x", "c"]),
            ]
        )
        optimizer = GraphOptimizer(graph)
        with self.assertLogs("StrengthReduce", level="INFO") as logs:
            PowStrengthReductionPass().transform(optimizer, protected_nodes=["pow"])

        text = "\n".join(logs.output)
        self.assertIn("[PowStrengthReduction] Starting graph optimization pass... (3 nodes)", text)
        self.assertIn("Nodes: 3 -> 2", text)
        self.assertIn("matched at pow", text)


if __name__ == "__main__":
    unittest.main()
