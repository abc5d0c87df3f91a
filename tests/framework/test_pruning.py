"""
Pruning Tests - 图裁剪测试
===========================

测试内容：
1. test_reference_counts      - 引用计数计算
2. test_preserve_placeholders - Placeholder 节点保留（即使无引用）
3. test_prune_newly_dead      - 本轮失去全部引用的节点被删除
4. test_final_prune_*         - 迭代裁剪、受保护节点、未改动的输出节点
5. test_update_node_inputs    - 输入重映射（端口、控制依赖、传递解析）
"""

import unittest
import tensorflow.compat.v1 as tf

from strength_reduce.core import GraphOptimizer, Op, RewriteResult
from strength_reduce.utils import create_node
from strength_reduce.utils.graph_utils import (
    broadcast_preserves,
    compute_reference_counts,
    final_prune,
    prune_dead_nodes,
    shapes_compatible,
    update_node_inputs,
)

tf.disable_v2_behavior()


def graph_of(nodes):
    graph_def = tf.GraphDef()
    graph_def.node.extend(nodes)
    return graph_def


class TestPruning(unittest.TestCase):
    """图裁剪测试套件。"""

    def test_reference_counts(self):
        graph_def = graph_of(
            [
                create_node("Const", "a"),
                create_node("Add", "b", inputs=["a", "a"]),
                create_node("Mul", "c", inputs=["a", "b:0"]),
            ]
        )
        refs = compute_reference_counts(graph_def)
        self.assertEqual(refs["a"], 3)
        self.assertEqual(refs["b"], 1)
        self.assertEqual(refs["c"], 0)

    def test_preserve_placeholders(self):
        graph_def = graph_of([create_node("Placeholder", "unused")])
        pruned = final_prune(graph_def, "test")
        self.assertIn("unused", [n.name for n in pruned.node])

    def test_prune_newly_dead(self):
        before = graph_of(
            [
                create_node("Placeholder", "x"),
                create_node("Neg", "n", inputs=["x"]),
                create_node("Abs", "a", inputs=["n"]),
                create_node("Exp", "out"),
            ]
        )
        refs_before = compute_reference_counts(before)
        after = graph_of(
            [
                create_node("Placeholder", "x"),
                create_node("Neg", "n", inputs=["x"]),
                create_node("Exp", "out", inputs=["x"]),
            ]
        )
        pruned = prune_dead_nodes(after, "test", refs_before)
        # "n" lost its only consumer, "out" was never consumed
        self.assertEqual([n.name for n in pruned.node], ["x", "out"])

    def test_prune_keeps_protected(self):
        graph_def = graph_of(
            [
                create_node("Placeholder", "x"),
                create_node("Const", "c"),
                create_node("Neg", "n", inputs=["x"]),
            ]
        )
        pruned = prune_dead_nodes(graph_def, "test", {"n": 1}, protected_nodes={"c", "n"})
        self.assertEqual(len(pruned.node), 3)

    def test_final_prune_is_iterative(self):
        graph_def = graph_of(
            [
                create_node("Placeholder", "x"),
                create_node("Neg", "a", inputs=["x"]),
                create_node("Neg", "b", inputs=["a"]),
                create_node("Neg", "c", inputs=["b"]),
            ]
        )
        pruned = final_prune(graph_def, "test")
        self.assertEqual([n.name for n in pruned.node], ["x"])

        pruned = final_prune(graph_def, "test", protected_nodes={"c"})
        self.assertEqual(len(pruned.node), 4)

    def test_final_prune_keeps_untouched_outputs(self):
        graph_def = graph_of(
            [
                create_node("Placeholder", "x"),
                create_node("Const", "unused_const"),
                create_node("Neg", "out", inputs=["x"]),
            ]
        )
        pruned = final_prune(
            graph_def, "test", refs_before=compute_reference_counts(graph_def)
        )
        self.assertEqual([n.name for n in pruned.node], ["x", "out"])

    def test_optimizer_prunes_orphaned_chain(self):
        graph = graph_of(
            [
                create_node("Placeholder", "x"),
                create_node("Neg", "n", inputs=["x"]),
                create_node("Abs", "a", inputs=["n"]),
                create_node("Identity", "out", inputs=["a"]),
            ]
        )
        optimizer = GraphOptimizer(graph)
        optimizer.add_transformation(
            Op("Identity", alias="root"),
            lambda m, o: RewriteResult([create_node("Identity", "out", inputs=["x"])]),
        )
        result = optimizer.optimize(max_iterations=1, protected_nodes=["out"])
        self.assertEqual([n.name for n in result.node], ["x", "out"])


class TestUpdateNodeInputs(unittest.TestCase):
    def test_ports_and_controls(self):
        node = create_node("Mul", "m", inputs=["a:1", "b", "^a"])
        update_node_inputs(node, {"a": "x", "b": "split:2"})
        self.assertEqual(list(node.input), ["x:1", "split:2", "^x"])

    def test_transitive_mapping(self):
        node = create_node("Neg", "n", inputs=["a"])
        update_node_inputs(node, {"a": "b", "b": "c"})
        self.assertEqual(list(node.input), ["c"])

    def test_circular_mapping_terminates(self):
        node = create_node("Neg", "n", inputs=["a"])
        update_node_inputs(node, {"a": "b", "b": "a"})
        self.assertEqual(len(node.input), 1)

    def test_hoisted_controls(self):
        node = create_node("Neg", "n", inputs=["x", "^init"])
        update_node_inputs(node, {}, hoisted_controls={"^init", "^other"})
        self.assertEqual(list(node.input), ["x", "^init", "^other"])

    def test_shapes_compatible(self):
        self.assertTrue(shapes_compatible(None, [3]))
        self.assertTrue(shapes_compatible([-1, 4], [8, 4]))
        self.assertFalse(shapes_compatible([3], [4]))
        self.assertFalse(shapes_compatible([3], [3, 1]))

    def test_broadcast_preserves(self):
        self.assertTrue(broadcast_preserves([4], [2, 4]))
        self.assertTrue(broadcast_preserves([1, 4], [3, 4]))
        self.assertTrue(broadcast_preserves([], [5]))
        self.assertFalse(broadcast_preserves([2, 4], [4]))
        self.assertFalse(broadcast_preserves([4], []))
        self.assertFalse(broadcast_preserves([3], [4]))
        self.assertFalse(broadcast_preserves([3], [1]))
        self.assertIsNone(broadcast_preserves([3], [-1]))
        self.assertIsNone(broadcast_preserves([-1], [3]))
        self.assertIsNone(broadcast_preserves([4], None))


if __name__ == "__main__":
    unittest.main()
