import os
import time
import collections
from typing import Dict, List, Set, Optional, Any as AnyType, Tuple

import numpy as np
import tensorflow.compat.v1 as tf
from tensorflow.python.framework import tensor_util

from .utils.logger import (
    logger as logging,
    trace_transformation,
    log_optimization,
    log_match,
)
from .utils.graph_io import save_graph
from .utils.graph_utils import (
    extract_base_name,
    compute_reference_counts,
    build_consumer_index,
    update_node_inputs,
    prune_dead_nodes,
    final_prune,
)


class InvalidOperationShape(ValueError):
    """A matched node violates the operand/result contract of a rewrite rule.

    Raised before any replacement is built. The optimizer reports it and keeps
    the offending node unchanged.
    """

    def __init__(self, node_name, reason):
        super().__init__(f"Invalid operation shape at '{node_name}': {reason}")
        self.node_name = node_name
        self.reason = reason


class RewriteResult:
    """
    Outcome of a successful rewrite.

    new_nodes:    nodes placed where the anchor node used to be, in order.
    node_mapping: old node name -> replacement (optionally "name:port"); every
                  consumer of the old node is redirected.
    """

    def __init__(self, new_nodes=None, node_mapping=None):
        self.new_nodes = list(new_nodes or [])
        self.node_mapping = dict(node_mapping or {})

    def __len__(self):
        return len(self.new_nodes)

    def __repr__(self):
        return (
            f"RewriteResult(new_nodes={[n.name for n in self.new_nodes]}, "
            f"node_mapping={self.node_mapping})"
        )

    @staticmethod
    def from_nodes(result):
        """Normalizes a rewriter return value (None, list of NodeDef, RewriteResult)."""
        if result is None or isinstance(result, RewriteResult):
            return result
        if isinstance(result, list):
            return RewriteResult(result)
        raise TypeError(
            f"Invalid rewriter return type: {type(result).__name__}. "
            "Expected None, list of NodeDef or RewriteResult."
        )


class GraphOptimizer:
    """
    Main engine for applying rewrite rules to a TensorFlow GraphDef.
    Manages graph state, consumer indexing, and iterative pattern matching.

    Besides matching, it is the host-side service provider for rules:
    constant inspection (`get_constant_value`), type introspection
    (`get_node_dtype`, `get_node_shape`, `is_shaped`) and substitution
    (applying a RewriteResult).
    """

    def __init__(self, graph_def: tf.GraphDef):
        self.current_pass_name = None
        self.protected_nodes: Set[str] = set()
        self.failed_rewrites: List[Tuple[str, str]] = []
        self.rewrite_count = 0
        self.iteration_count = 0
        self.load_state(graph_def)

    def load_state(self, graph_def: tf.GraphDef):
        """Restores the optimizer state from a GraphDef."""
        self.graph_def = graph_def
        self._index_nodes(graph_def)
        # op_type -> [(pattern, rewriter)]
        self.pattern_index: Dict[str, List[Tuple["Pattern", AnyType]]] = (
            collections.defaultdict(list)
        )
        self.wildcard_patterns: List[Tuple["Pattern", AnyType]] = []

    def _index_nodes(self, graph_def):
        self.nodes: Dict[str, tf.NodeDef] = {node.name: node for node in graph_def.node}
        self.consumers: Dict[str, List[str]] = build_consumer_index(graph_def)

    def add_transformation(self, pattern, rewriter):
        """Adds a transformation rule (pattern -> rewriter)."""
        logging.info(
            f"Adding transformation: rule={rewriter.__name__} pattern={pattern}"
        )
        op_type = pattern.get_indexed_op_type()
        if op_type is None:
            self.wildcard_patterns.append((pattern, rewriter))
        else:
            self.pattern_index[op_type].append((pattern, rewriter))

    def clear_transformations(self):
        """Clears all registered transformations."""
        self.pattern_index = collections.defaultdict(list)
        self.wildcard_patterns = []

    @log_optimization
    def optimize(
        self,
        pass_name=None,
        max_iterations=100,
        auto_cleanup=True,
        protected_nodes=None,
    ):
        # protected_nodes: nodes with zero consumers that should NOT be pruned (e.g. outputs)
        self.protected_nodes = set(protected_nodes or [])
        self.current_pass_name = pass_name
        self.failed_rewrites = []
        self.rewrite_count = 0
        self.iteration_count = 0

        current_graph_def = self.graph_def
        refs_at_start = compute_reference_counts(current_graph_def)
        failed_names = set()
        modified = True

        while modified:
            if self.iteration_count >= max_iterations:
                logging.warning(
                    f"Optimization pass '{pass_name}' reached max iterations ({max_iterations}). Stopping."
                )
                break
            self.iteration_count += 1
            modified = False
            new_nodes = []
            node_mapping = {}
            # redirected name -> control inputs its consumers inherit
            redirected_controls = {}

            self._index_nodes(current_graph_def)
            refs_before = compute_reference_counts(current_graph_def)

            for node in current_graph_def.node:
                candidates = (
                    self.pattern_index.get(node.op, []) + self.wildcard_patterns
                )
                result = None
                match = None
                if node.name not in failed_names:
                    for pattern, rewriter in candidates:
                        match = pattern.match(node, self)
                        if not match:
                            continue
                        try:
                            result = RewriteResult.from_nodes(rewriter(match, self))
                        except InvalidOperationShape as e:
                            logging.error(f"[{pass_name or 'optimize'}] {e}")
                            self.failed_rewrites.append((node.name, e.reason))
                            failed_names.add(node.name)
                            result = None
                            break
                        if result is not None:
                            break

                if result is None:
                    new_nodes.append(node)
                    continue

                controls = self._carry_control_inputs(node, match, result)
                if controls:
                    redirected_controls[node.name] = controls
                new_nodes.extend(result.new_nodes)
                node_mapping.update(result.node_mapping)
                self.rewrite_count += 1
                modified = True

            if modified:
                next_graph_def = tf.GraphDef()
                next_graph_def.node.extend(new_nodes)
                if node_mapping:
                    for new_node in next_graph_def.node:
                        update_node_inputs(
                            new_node,
                            node_mapping,
                            self._inherited_controls(new_node, redirected_controls),
                        )
                if auto_cleanup:
                    next_graph_def = prune_dead_nodes(
                        next_graph_def,
                        pass_name,
                        refs_before,
                        self.protected_nodes,
                        logger=logging,
                    )
                current_graph_def = next_graph_def

        if auto_cleanup:
            current_graph_def = final_prune(
                current_graph_def,
                pass_name,
                self.protected_nodes,
                refs_before=refs_at_start,
                logger=logging,
            )

        self.current_pass_name = None
        return current_graph_def

    @staticmethod
    def _carry_control_inputs(node, match, result):
        """Moves control dependencies of the match onto the replacement.

        The node that takes over the root's name gets them. Otherwise, when the
        root is redirected, they are returned for its consumers to inherit;
        failing both, the last new node gets them.
        """
        relevant_controls = {
            ci
            for ci in match.control_inputs
            if ci.lstrip("^") not in match.all_matched_nodes
        }
        if not relevant_controls:
            return None

        target_node = next((n for n in result.new_nodes if n.name == node.name), None)
        if target_node is None and node.name in result.node_mapping:
            logging.debug(
                f"Control inputs {sorted(relevant_controls)} of '{node.name}' "
                f"move to the consumers of '{result.node_mapping[node.name]}'"
            )
            return relevant_controls
        if target_node is None and result.new_nodes:
            target_node = result.new_nodes[-1]
        if target_node is None:
            logging.warning(
                f"Control inputs {sorted(relevant_controls)} of '{node.name}' "
                "dropped: the rewrite neither replaces nor redirects it"
            )
            return None

        existing = set(target_node.input)
        for ci in sorted(relevant_controls):
            if ci not in existing:
                target_node.input.append(ci)
        return None

    @staticmethod
    def _inherited_controls(node, redirected_controls):
        """Control inputs `node` inherits from redirected inputs."""
        if not redirected_controls:
            return None
        inherited = set()
        for input_name in node.input:
            inherited.update(redirected_controls.get(extract_base_name(input_name), ()))
        inherited.discard(f"^{node.name}")
        return inherited

    # ------------------------------------------------------------------
    # Host services for rewrite rules
    # ------------------------------------------------------------------

    def _resolve(self, node_or_name):
        if isinstance(node_or_name, str):
            return self.nodes.get(extract_base_name(node_or_name))
        return node_or_name

    def get_node_attr(self, node_or_name, attr_name, default=None):
        """Returns the unwrapped attribute value of a node."""
        node = self._resolve(node_or_name)
        if not node or attr_name not in node.attr:
            return default
        return get_attr_value(node.attr[attr_name])

    def get_node_shape(self, node_or_name):
        """Returns the output shape of a node as a list of ints, or None if unknown.

        Unknown dimensions are reported as -1. An input reference with a port
        ("split:1") selects the matching entry of `_output_shapes`.
        """
        node = self._resolve(node_or_name)
        if not node:
            return None

        port = 0
        if isinstance(node_or_name, str) and ":" in node_or_name:
            port = int(node_or_name.split(":", 1)[1])

        output_shapes = (
            node.attr["_output_shapes"].list.shape if "_output_shapes" in node.attr else []
        )
        if port > 0:
            if port >= len(output_shapes):
                return None
            shape_proto = output_shapes[port]
        elif "shape" in node.attr and node.attr["shape"].HasField("shape"):
            shape_proto = node.attr["shape"].shape
        elif output_shapes:
            shape_proto = output_shapes[0]
        elif node.op == "Const" and "value" in node.attr:
            shape_proto = node.attr["value"].tensor.tensor_shape
        else:
            return None

        if shape_proto.unknown_rank:
            return None
        return [dim.size for dim in shape_proto.dim]

    def get_node_rank(self, node_or_name):
        """Returns the rank of a node's output tensor."""
        shape = self.get_node_shape(node_or_name)
        return len(shape) if shape is not None else None

    def is_shaped(self, node_or_name):
        """True when the node's result is known to be a non-scalar tensor."""
        rank = self.get_node_rank(node_or_name)
        return rank is not None and rank > 0

    def get_node_dtype(self, node_or_name) -> Optional[tf.DType]:
        """Returns the element dtype of a node's first output, or None if unknown."""
        node = self._resolve(node_or_name)
        if not node:
            return None
        for attr_name in ("T", "dtype"):
            if attr_name in node.attr and node.attr[attr_name].type:
                return tf.as_dtype(node.attr[attr_name].type)
        return None

    def get_constant_value(self, node_or_name) -> Optional[np.ndarray]:
        """Returns the value of a Const node as an ndarray, or None if not a constant."""
        node = self._resolve(node_or_name)
        if node is None or node.op != "Const" or "value" not in node.attr:
            return None
        if not node.attr["value"].HasField("tensor"):
            return None
        return tensor_util.MakeNdarray(node.attr["value"].tensor)


class MatchContext:
    def __init__(self):
        self.matched_nodes = {}  # alias -> NodeDef
        self.all_matched_nodes = set()  # set of node names
        self.control_inputs = set()  # set of "^node_name"


class Pattern:
    def __init__(self, alias=None):
        self.alias = alias
        self.consumer_count = None

    @log_match
    def match(
        self,
        node: tf.NodeDef,
        optimizer: "GraphOptimizer",
        context: Optional["MatchContext"] = None,
    ) -> Optional["MatchContext"]:
        if context is None:
            context = MatchContext()
        if self._match_internal(node, optimizer, context):
            return context
        return None

    def _match_internal(self, node, optimizer, context):
        res = self._do_match(node, optimizer, context)
        if res:
            context.all_matched_nodes.add(node.name)
            for input_name in node.input:
                if input_name.startswith("^"):
                    context.control_inputs.add(input_name)
            if self.alias:
                context.matched_nodes[self.alias] = node
        return res

    def _match_consumers(self, node, optimizer):
        if self.consumer_count is None:
            return True
        return len(optimizer.consumers.get(node.name, [])) == self.consumer_count

    def _do_match(self, node, optimizer, context):
        raise NotImplementedError()

    def get_indexed_op_type(self):
        """Return op_type for indexing, or None for wildcard patterns."""
        return None


class OpPattern(Pattern):
    def __init__(self, op_type, inputs=None, attrs=None, alias=None):
        super().__init__(alias)
        self.op_type = op_type
        self.inputs = inputs or []  # List of Pattern; empty means "any inputs"
        self.attrs = attrs or {}  # attr_name -> value or predicate

    def __repr__(self):
        inner = ", ".join(repr(p) for p in self.inputs)
        return f"Op({self.op_type!r}{', ' + inner if inner else ''})"

    def get_indexed_op_type(self):
        """Return op_type for indexing. Wildcards (*) return None."""
        return None if self.op_type in (None, "*") else self.op_type

    def _do_match(self, node, optimizer, context):
        if self.op_type not in (None, "*") and node.op != self.op_type:
            return False

        for attr_name, expected in self.attrs.items():
            if attr_name not in node.attr:
                return False
            actual = get_attr_value(node.attr[attr_name])
            if callable(expected):
                if not expected(actual):
                    return False
            elif actual != expected:
                return False

        if self.inputs:
            node_inputs = [i for i in node.input if not i.startswith("^")]
            if len(node_inputs) != len(self.inputs):
                return False
            for input_name, input_pattern in zip(node_inputs, self.inputs):
                input_node = optimizer.nodes.get(extract_base_name(input_name))
                if input_node is None:
                    return False
                if not input_pattern._match_internal(input_node, optimizer, context):
                    return False

        return self._match_consumers(node, optimizer)


class WildcardPattern(Pattern):
    def __repr__(self):
        return "Any()"

    def _do_match(self, node, optimizer, context):
        return self._match_consumers(node, optimizer)


def get_attr_value(attr_proto):
    """Unwraps a TensorFlow AttrValue proto into a Python literal."""
    field = attr_proto.WhichOneof("value")
    if field == "s":
        return attr_proto.s.decode("utf-8")
    if field == "i":
        return attr_proto.i
    if field == "f":
        return attr_proto.f
    if field == "b":
        return attr_proto.b
    if field == "type":
        return attr_proto.type
    if field == "shape":
        return [dim.size for dim in attr_proto.shape.dim]
    if field == "tensor":
        t = tensor_util.MakeNdarray(attr_proto.tensor)
        if np.isscalar(t) or t.ndim == 0:
            return t.item()
        return t
    # Fallback to the proto itself for complex types
    return attr_proto


# Helper functions to build patterns
def Op(op_type, *inputs, alias=None, attrs=None, consumer_count=None):
    pattern = OpPattern(op_type, list(inputs), attrs, alias)
    pattern.consumer_count = consumer_count
    return pattern


def Any(alias=None, consumer_count=None):
    pattern = WildcardPattern(alias)
    pattern.consumer_count = consumer_count
    return pattern


class OptimizationContext:
    """Shared state across the passes of one pipeline run."""

    def __init__(self, protected_nodes=None, auto_cleanup=True, debug_dir=None):
        self.protected_nodes = list(protected_nodes or [])
        self.auto_cleanup = auto_cleanup
        self.debug_dir = debug_dir
        self._pass_stats: Dict[str, Dict[str, AnyType]] = collections.OrderedDict()

    def record_pass(self, pass_name, optimizer, nodes_before, nodes_after, duration):
        self._pass_stats[pass_name] = {
            "iterations": optimizer.iteration_count,
            "total_changes": optimizer.rewrite_count,
            "failed": list(optimizer.failed_rewrites),
            "nodes_before": nodes_before,
            "nodes_after": nodes_after,
            "duration": duration,
        }

    def get_pass_stats(self, pass_name):
        return self._pass_stats.get(pass_name)


class BasePass:
    """Base class for all graph optimization passes."""

    def __init__(self, name=None):
        self.name = name or self.__class__.__name__

    def transform(
        self,
        optimizer: GraphOptimizer,
        step=None,
        debug_dir=None,
        auto_cleanup=True,
        protected_nodes=None,
        context: Optional[OptimizationContext] = None,
    ):
        """
        Applies the transformation to the optimizer's graph and returns the new GraphDef.

        Args:
            optimizer: The GraphOptimizer instance
            step: Optional step number for debugging
            debug_dir: Optional directory to save debug output
            auto_cleanup: If True, prune dead nodes after optimization (default: True)
            protected_nodes: List of node names that should not be pruned (e.g. outputs)
            context: Optional OptimizationContext; overrides auto_cleanup/protected_nodes
                     and collects per-pass statistics
        """
        raise NotImplementedError()


class PatternRewritePass(BasePass):
    """A pass that applies a pattern-matching-based rewrite."""

    def __init__(self, pattern, rewriter, name=None):
        super().__init__(name)
        self.pattern = pattern
        self.rewriter = trace_transformation(rewriter)

    def transform(
        self,
        optimizer: GraphOptimizer,
        step=None,
        debug_dir=None,
        auto_cleanup=True,
        protected_nodes=None,
        context: Optional[OptimizationContext] = None,
    ):
        """Apply this pass using GraphOptimizer.optimize()."""
        if context is not None:
            auto_cleanup = context.auto_cleanup
            protected_nodes = context.protected_nodes

        optimizer.add_transformation(self.pattern, self.rewriter)

        nodes_before = len(optimizer.graph_def.node)
        start_time = time.time()
        optimized_graph = optimizer.optimize(
            pass_name=self.name,
            auto_cleanup=auto_cleanup,
            protected_nodes=protected_nodes,
        )
        duration = time.time() - start_time

        if context is not None:
            context.record_pass(
                self.name, optimizer, nodes_before, len(optimized_graph.node), duration
            )

        # Sync graph_def, nodes and consumers for the next pass
        optimizer.load_state(optimized_graph)

        if debug_dir and step is not None:
            save_graph(optimized_graph, os.path.join(debug_dir, f"{step:02d}_{self.name}.pb"))

        return optimized_graph


class PassRegistry:
    """Registry for managing optimization passes."""

    _registered_passes = {}
    _pass_metadata = {}

    @classmethod
    def register(cls, name, opt_level=1, priority=100):
        """Decorator to register a pass class with an optimization level and priority."""

        def decorator(pass_cls):
            cls._registered_passes[name] = pass_cls
            cls._pass_metadata[name] = {"opt_level": opt_level, "priority": priority}
            return pass_cls

        return decorator

    @classmethod
    def get_pass(cls, name, *args, **kwargs):
        """Creates an instance of the pass by its registered name."""
        if name not in cls._registered_passes:
            raise ValueError(f"Unknown pass: {name}")
        return cls._registered_passes[name](*args, **kwargs)

    @classmethod
    def list_available_passes(cls):
        """Returns a list of all registered pass names."""
        return list(cls._registered_passes.keys())

    @classmethod
    def get_pass_priority(cls, name):
        meta = cls._pass_metadata.get(name)
        if meta and "priority" in meta:
            return (meta["priority"], name)
        return (100, name)

    @classmethod
    def get_passes_by_level(cls, level):
        """Returns pass names enabled at the given optimization level, sorted by priority."""
        candidates = [
            name for name, meta in cls._pass_metadata.items() if meta["opt_level"] <= level
        ]
        return sorted(candidates, key=cls.get_pass_priority)
