"""
Pow Strength Reduction
======================

Replaces ``Pow(x, c)`` with a cheaper equivalent when the exponent ``c`` is a
floating-point Const, either a scalar or a tensor whose elements all hold the
same value (a splat):

    pow(x,  1.0) -> x
    pow(x,  2.0) -> x * x
    pow(x,  3.0) -> x * (x * x)
    pow(x, -1.0) -> 1.0 / x        (1.0 is broadcast when the result is shaped)

Exponent values are compared exactly, never within a tolerance. The rules live
in the ordered table ``POW_REDUCTION_RULES``; the first entry whose exponent
matches wins, so reordering or removing a rule is an edit of that table only.

The rewriter never deletes anything itself. The last node of every replacement
chain takes the name of the Pow node, so consumers and graph outputs keep
pointing at it; the exponent Const is left to the optimizer's dead node
pruning. Replacement nodes are never Pow nodes, so running the pass again on
its own output is a no-op.

Host services used (see GraphOptimizer): ``get_constant_value``,
``get_node_dtype``, ``get_node_shape`` and the RewriteResult substitution.
"""

from __future__ import annotations

import numpy as np
import tensorflow.compat.v1 as tf

from ...core import (
    InvalidOperationShape,
    Op,
    PassRegistry,
    PatternRewritePass,
    RewriteResult,
)
from ...utils.graph_io import create_node
from ...utils.graph_utils import (
    create_const_node,
    broadcast_preserves,
    data_inputs,
    make_type_attr,
    shapes_compatible,
)
from ...utils.logger import logger as logging


# ==============================================================================
# Exponent classification
# ==============================================================================


class ExponentConstant:
    """Statically known exponent of a Pow node. Subclasses are the only variants."""

    def matches(self, target: float) -> bool:
        return False


class ScalarExponent(ExponentConstant):
    def __init__(self, value: float):
        self.value = value

    def matches(self, target):
        return self.value == target

    def __eq__(self, other):
        return type(other) is ScalarExponent and other.value == self.value

    def __repr__(self):
        return f"ScalarExponent({self.value!r})"


class SplatExponent(ExponentConstant):
    """A tensor exponent whose elements are all equal to `value`."""

    def __init__(self, value: float, shape):
        self.value = value
        self.shape = list(shape)

    def matches(self, target):
        return self.value == target

    def __eq__(self, other):
        return (
            type(other) is SplatExponent
            and other.value == self.value
            and other.shape == self.shape
        )

    def __repr__(self):
        return f"SplatExponent({self.value!r}, shape={self.shape})"


class NotConstant(ExponentConstant):
    def __repr__(self):
        return "NOT_CONSTANT"


NOT_CONSTANT = NotConstant()


def classify_exponent(exponent_input, optimizer) -> ExponentConstant:
    """Classifies the exponent operand of a Pow node.

    Only floating-point Const nodes qualify. Integer constants, non-constant
    operands and tensors with differing elements are NOT_CONSTANT.
    """
    value = optimizer.get_constant_value(exponent_input)
    if value is None:
        return NOT_CONSTANT

    dtype = optimizer.get_node_dtype(exponent_input)
    if dtype is None or not dtype.is_floating:
        return NOT_CONSTANT

    if value.ndim == 0:
        return ScalarExponent(float(value))
    if value.size == 0:
        return NOT_CONSTANT

    first = value.flat[0]
    if np.all(value == first):
        return SplatExponent(float(first), value.shape)
    return NOT_CONSTANT


# ==============================================================================
# Rewrite site
# ==============================================================================


class PowSite:
    """A validated Pow node: its base operand and result type."""

    def __init__(self, root, base, dtype, shape, taken_names=()):
        self.root = root
        self.base = base  # input reference, may carry a port ("split:1")
        self.dtype = dtype  # tf.DType or None when unknown
        self.shape = shape  # list of ints (-1 for unknown dims) or None
        self.taken_names = taken_names
        # False when the exponent may broadcast the base to a larger shape
        self.exponent_fits = True

    @property
    def is_shaped(self):
        return self.shape is not None and len(self.shape) > 0

    def _attrs(self, extra=None):
        attrs = {}
        if self.dtype is not None:
            attrs["T"] = make_type_attr(self.dtype)
        attrs.update(extra or {})
        return attrs

    def scoped_name(self, suffix):
        """`<pow>/<suffix>`, numbered when the graph already holds that name."""
        name = f"{self.root.name}/{suffix}"
        index = 1
        while name in self.taken_names:
            name = f"{self.root.name}/{suffix}_{index}"
            index += 1
        return name

    def intermediate(self, op, suffix, inputs, attrs=None):
        """Creates a helper node scoped under the Pow node's name."""
        return create_node(op, self.scoped_name(suffix), inputs, self._attrs(attrs))

    def replacement(self, op, inputs):
        """Creates the node that takes over the Pow node's name and outputs."""
        node = create_node(op, self.root.name, inputs, self._attrs())
        if "_output_shapes" in self.root.attr:
            node.attr["_output_shapes"].CopyFrom(self.root.attr["_output_shapes"])
        return node

    def element_dtype(self):
        return self.dtype if self.dtype is not None else tf.float32


def inspect_pow(node, optimizer):
    """Validates a Pow node and returns (PowSite, exponent input).

    Raises:
        InvalidOperationShape: when the node is not a two-operand Pow or its
            result type disagrees with its base operand.
    """
    if node.op != "Pow":
        raise InvalidOperationShape(node.name, f"expected a Pow node, got '{node.op}'")

    operands = data_inputs(node)
    if len(operands) != 2:
        raise InvalidOperationShape(
            node.name, f"expected 2 data inputs, got {len(operands)}"
        )
    base, exponent = operands

    result_dtype = optimizer.get_node_dtype(node)
    base_dtype = optimizer.get_node_dtype(base)
    if result_dtype is not None and base_dtype is not None and result_dtype != base_dtype:
        raise InvalidOperationShape(
            node.name,
            f"result dtype {result_dtype.name} differs from base dtype {base_dtype.name}",
        )

    result_shape = optimizer.get_node_shape(node)
    base_shape = optimizer.get_node_shape(base)
    if not shapes_compatible(result_shape, base_shape):
        raise InvalidOperationShape(
            node.name, f"result shape {result_shape} differs from base shape {base_shape}"
        )

    # Pow broadcasts: a non-scalar exponent may grow the result past the base
    exponent_shape = optimizer.get_node_shape(exponent)
    if exponent_shape == []:
        fits = True
    elif exponent_shape is None:
        fits = None
    else:
        fits = broadcast_preserves(exponent_shape, base_shape)
    if fits is False:
        raise InvalidOperationShape(
            node.name,
            f"exponent shape {exponent_shape} broadcasts base shape {base_shape}",
        )

    site = PowSite(
        root=node,
        base=base,
        dtype=result_dtype or base_dtype,
        shape=result_shape if result_shape is not None else base_shape,
        taken_names=optimizer.nodes,
    )
    site.exponent_fits = bool(fits)
    return site, exponent


# ==============================================================================
# Replacement builders
# ==============================================================================


def _build_identity(site):
    return RewriteResult(new_nodes=[], node_mapping={site.root.name: site.base})


def _build_square(site):
    return RewriteResult([site.replacement("Mul", [site.base, site.base])])


def _build_cube(site):
    square = site.intermediate("Mul", "square", [site.base, site.base])
    return RewriteResult([square, site.replacement("Mul", [site.base, square.name])])


def _build_reciprocal(site):
    one = create_const_node(site.scoped_name("one"), value=1.0, dtype=site.element_dtype())
    new_nodes = [one]
    numerator = one.name

    if site.is_shaped:
        if all(dim >= 0 for dim in site.shape):
            shape = create_const_node(
                site.scoped_name("shape"), value=site.shape, dtype=tf.int32
            )
        else:
            shape = site.intermediate(
                "Shape", "shape", [site.base], {"out_type": make_type_attr(tf.int32)}
            )
        bcast = site.intermediate(
            "BroadcastTo",
            "broadcast",
            [one.name, shape.name],
            {"Tidx": make_type_attr(tf.int32)},
        )
        new_nodes.extend([shape, bcast])
        numerator = bcast.name

    new_nodes.append(site.replacement("RealDiv", [numerator, site.base]))
    return RewriteResult(new_nodes)


def _build_sqrt(site):
    return RewriteResult([site.replacement("Sqrt", [site.base])])


# ==============================================================================
# Rule table
# ==============================================================================


class ReductionRule:
    """Pairs an exact exponent value with the builder of its replacement."""

    def __init__(self, name, exponent, build):
        self.name = name
        self.exponent = exponent
        self.build = build

    def matches(self, exponent_constant: ExponentConstant) -> bool:
        return exponent_constant.matches(self.exponent)

    def __repr__(self):
        return f"ReductionRule({self.name!r}, {self.exponent!r})"


POW_REDUCTION_RULES = (
    ReductionRule("identity", 1.0, _build_identity),
    ReductionRule("square", 2.0, _build_square),
    ReductionRule("cube", 3.0, _build_cube),
    ReductionRule("reciprocal", -1.0, _build_reciprocal),
    # Keyed on -1.0 behind "reciprocal": never fires. See DESIGN.md.
    ReductionRule("sqrt", -1.0, _build_sqrt),
)


def select_rule(exponent_constant, rules=POW_REDUCTION_RULES):
    """Returns the first rule matching the exponent, or None."""
    for rule in rules:
        if rule.matches(exponent_constant):
            return rule
    return None


def try_reduce(node, optimizer, rules=POW_REDUCTION_RULES):
    """Strength-reduces a single Pow node.

    Returns a RewriteResult when a rule fired, or None (no match). Nothing in
    the graph is modified here; the optimizer applies the result.

    Raises:
        InvalidOperationShape: see `inspect_pow`.
    """
    site, exponent_input = inspect_pow(node, optimizer)

    exponent = classify_exponent(exponent_input, optimizer)
    if exponent is NOT_CONSTANT:
        logging.debug(f"{node.name}: exponent '{exponent_input}' is not a usable constant")
        return None
    if not site.exponent_fits:
        logging.debug(f"{node.name}: cannot prove {exponent} keeps the base shape")
        return None

    rule = select_rule(exponent, rules)
    if rule is None:
        logging.debug(f"{node.name}: no reduction for {exponent}")
        return None

    result = rule.build(site)
    if not result.new_nodes and node.name in getattr(optimizer, "protected_nodes", ()):
        # Redirecting consumers would drop a protected output name.
        logging.debug(f"{node.name}: protected, skipping '{rule.name}'")
        return None

    logging.debug(f"{node.name}: {exponent} -> '{rule.name}'")
    return result


# ==============================================================================
# Pass registration
# ==============================================================================


@PassRegistry.register("pow_strength_reduction", opt_level=1, priority=7)
class PowStrengthReductionPass(PatternRewritePass):
    def __init__(self, rules=POW_REDUCTION_RULES):
        self.rules = tuple(rules)
        pattern = Op("Pow", alias="root")
        super().__init__(pattern, self._rewrite, name="PowStrengthReduction")

    def _rewrite(self, match, optimizer):
        return try_reduce(match.matched_nodes["root"], optimizer, self.rules)


def populate_pow_strength_reduction(optimizer, rules=POW_REDUCTION_RULES):
    """Contributes the Pow strength reduction rule to an optimizer's active rule set."""
    pass_instance = PowStrengthReductionPass(rules)
    optimizer.add_transformation(pass_instance.pattern, pass_instance.rewriter)
    return pass_instance
