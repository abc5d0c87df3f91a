"""
Pow Strength Reduction Numeric Tests
====================================

构建真实的 TF 图（tf.pow），经 OptimizationPipeline 改写后在 tf.Session 中
执行原图与改写后的图，并与 np.power 比较结果。
"""

import unittest
import numpy as np
import tensorflow.compat.v1 as tf

from strength_reduce.runner import OptimizationPipeline

tf.disable_v2_behavior()


class PowStrengthReductionNumericTest(unittest.TestCase):
    def setUp(self):
        tf.reset_default_graph()
        self.rng = np.random.RandomState(0)

    def build_pow_graph(self, exponent, shape, add_shapes=True):
        with tf.Graph().as_default() as g:
            x = tf.placeholder(tf.float32, shape=shape, name="x")
            y = tf.pow(x, tf.constant(exponent, dtype=tf.float32, name="c"), name="pow")
            tf.identity(y, name="out")
        return g.as_graph_def(add_shapes=add_shapes)

    def optimize(self, graph_def):
        pipeline = OptimizationPipeline(graph_def=graph_def, output_nodes=["out"])
        return pipeline.run()

    def evaluate(self, graph_def, data):
        with tf.Graph().as_default() as g:
            tf.import_graph_def(graph_def, name="")
            with tf.Session(graph=g) as sess:
                return sess.run("out:0", feed_dict={"x:0": data})

    def check(self, exponent, shape, feed_shape=None, expected_ops=()):
        graph_def = self.build_pow_graph(exponent, shape)
        optimized = self.optimize(graph_def)
        ops = [n.op for n in optimized.node]

        self.assertNotIn("Pow", ops)
        for op in expected_ops:
            self.assertIn(op, ops)

        data = self.rng.uniform(0.5, 2.0, size=feed_shape or shape).astype(np.float32)
        expected = np.power(data, np.float32(np.asarray(exponent).flat[0]))
        original = self.evaluate(graph_def, data)
        reduced = self.evaluate(optimized, data)

        np.testing.assert_allclose(original, expected, rtol=1e-5)
        np.testing.assert_allclose(reduced, expected, rtol=1e-5)
        self.assertEqual(reduced.shape, original.shape)
        return optimized

    def test_identity(self):
        optimized = self.check(1.0, [4])
        out = next(n for n in optimized.node if n.name == "out")
        self.assertEqual(list(out.input), ["x"])

    def test_square(self):
        self.check(2.0, [2, 3], expected_ops=["Mul"])

    def test_cube(self):
        optimized = self.check(3.0, [5], expected_ops=["Mul"])
        self.assertIn("pow/square", [n.name for n in optimized.node])

    def test_reciprocal_scalar(self):
        self.check(-1.0, [], expected_ops=["RealDiv"])

    def test_reciprocal_static_shape(self):
        self.check(-1.0, [2, 4], expected_ops=["BroadcastTo", "RealDiv"])

    def test_reciprocal_dynamic_shape(self):
        self.check(-1.0, [None, 3], feed_shape=[6, 3], expected_ops=["Shape", "BroadcastTo"])

    def test_splat_exponent(self):
        self.check([2.0, 2.0, 2.0], [3], expected_ops=["Mul"])

    def test_broadcasting_exponent_is_kept(self):
        # Without _output_shapes only the exponent's own shape reveals the broadcast
        exponent = np.full([2, 3], 2.0, dtype=np.float32)
        graph_def = self.build_pow_graph(exponent, [3], add_shapes=False)
        optimized = self.optimize(graph_def)
        self.assertIn("Pow", [n.op for n in optimized.node])

        data = self.rng.uniform(0.5, 2.0, size=[3]).astype(np.float32)
        reduced = self.evaluate(optimized, data)
        self.assertEqual(reduced.shape, (2, 3))
        np.testing.assert_allclose(reduced, np.power(data, exponent), rtol=1e-5)

    def test_unmatched_exponent_is_kept(self):
        graph_def = self.build_pow_graph(0.5, [3])
        optimized = self.optimize(graph_def)
        self.assertIn("Pow", [n.op for n in optimized.node])

        data = self.rng.uniform(0.5, 2.0, size=[3]).astype(np.float32)
        np.testing.assert_allclose(
            self.evaluate(optimized, data), np.sqrt(data), rtol=1e-5
        )


if __name__ == "__main__":
    unittest.main()
