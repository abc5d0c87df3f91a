"""
Graph manipulation utility functions.

Stateless helpers shared by the optimizer engine and the rewrite passes:
node construction, input remapping and dead node pruning.
"""

import collections
import numpy as np
from typing import Dict, Set, Optional, List

import tensorflow.compat.v1 as tf
from tensorflow.core.framework import attr_value_pb2
from tensorflow.python.framework import tensor_util

from .graph_io import create_node


# =======================
# Node Construction
# =======================


def make_type_attr(dtype) -> attr_value_pb2.AttrValue:
    """Creates a `type` AttrValue (e.g. for the `T` attr) from any dtype spelling."""
    return attr_value_pb2.AttrValue(type=tf.as_dtype(dtype).as_datatype_enum)


def create_const_node(name: str, value, dtype, shape: list = None):
    """Creates a Const NodeDef with given value, dtype and shape.

    `dtype` may be a string ("float32"), a tf.DType or a DataType enum.
    """
    tf_dtype = tf.as_dtype(dtype)
    np_array = np.array(value, dtype=tf_dtype.as_numpy_dtype)
    tensor = tensor_util.make_tensor_proto(np_array, dtype=tf_dtype, shape=shape)

    node = create_node("Const", name)
    node.attr["dtype"].CopyFrom(make_type_attr(tf_dtype))
    node.attr["value"].tensor.CopyFrom(tensor)
    return node


def make_output_shapes_attr(shapes: List[List[int]]) -> attr_value_pb2.AttrValue:
    """
    Creates an AttrValue proto for _output_shapes.

    Args:
        shapes: List of shapes, where each shape is a list of integers.

    Returns:
        attr_value_pb2.AttrValue: The formatted attribute
    """
    attr = attr_value_pb2.AttrValue()
    for shape in shapes:
        shape_proto = attr.list.shape.add()
        for dim in shape:
            shape_proto.dim.add().size = dim
    return attr


# =======================
# Graph Analysis Utilities
# =======================


def extract_base_name(input_name: str) -> str:
    """
    Extract base node name from input (strip port and control marker).

    Examples:
        'node:0' -> 'node'
        '^control_dep' -> 'control_dep'
        'node' -> 'node'
    """
    return input_name.split(":")[0].lstrip("^")


def data_inputs(node: tf.NodeDef) -> List[str]:
    """Returns the non-control inputs of a node, in order."""
    return [i for i in node.input if not i.startswith("^")]


def shapes_compatible(a: Optional[List[int]], b: Optional[List[int]]) -> bool:
    """
    True unless both shapes are known and provably different.

    Unknown dimensions (-1) are compatible with any size.
    """
    if a is None or b is None:
        return True
    if len(a) != len(b):
        return False
    return all(x == y or x < 0 or y < 0 for x, y in zip(a, b))


def broadcast_preserves(shape: List[int], target: Optional[List[int]]) -> Optional[bool]:
    """
    Whether broadcasting `shape` against `target` leaves `target` unchanged.

    Returns True when provably unchanged, False when provably changed (or not
    broadcastable), None when unknown dimensions leave it open.

    Examples:
        [4] against [2, 4]     -> True
        [1, 4] against [4]     -> False (adds a dimension)
        [3] against [-1]       -> None
    """
    if target is None:
        return None
    if len(shape) > len(target):
        return False

    verdict = True
    for dim, target_dim in zip(reversed(shape), reversed(target)):
        if dim == 1 or (dim == target_dim and dim >= 0):
            continue
        if dim < 0 or target_dim < 0:
            verdict = None
            continue
        return False
    return verdict


def compute_reference_counts(graph_def: tf.GraphDef) -> Dict[str, int]:
    """Compute reference count for each node (how many inputs point at it)."""
    reference_counts: Dict[str, int] = collections.defaultdict(int)
    for node in graph_def.node:
        for input_name in node.input:
            reference_counts[extract_base_name(input_name)] += 1
    return reference_counts


def build_consumer_index(graph_def: tf.GraphDef) -> Dict[str, list]:
    """Maps node names to the names of the nodes consuming them."""
    consumers = collections.defaultdict(list)
    for node in graph_def.node:
        for input_name in node.input:
            consumers[extract_base_name(input_name)].append(node.name)
    return consumers


def update_node_inputs(
    node: tf.NodeDef, node_mapping: Dict[str, str], hoisted_controls: Set[str] = None
):
    """
    Update node's inputs based on node_mapping (old_name -> new_name).

    Mapping targets may carry an explicit port ("split:1"); such a target
    replaces the consumer's port. Plain targets keep the consumer's port.
    Control dependency markers are preserved.

    Args:
        node: Node to update
        node_mapping: Dict mapping old node names to new node names
        hoisted_controls: Optional set of control dependency names (e.g., '^node')
                         to append to this node.
    """
    updated_inputs = []
    existing_controls = set()
    for input_name in node.input:
        is_control = input_name.startswith("^")
        if is_control:
            existing_controls.add(input_name)

        base_name = extract_base_name(input_name)
        port = ""
        if not is_control and ":" in input_name:
            port = ":" + input_name.split(":", 1)[1]

        # Resolve transitively to handle multiple replacements in a single iteration
        target = base_name
        visited = {target}
        while extract_base_name(target) in node_mapping:
            target = node_mapping[extract_base_name(target)]
            if target in visited:  # Safeguard against circular mapping
                break
            visited.add(target)

        if target == base_name:
            updated_inputs.append(input_name)
            continue

        if is_control:
            new_input = f"^{extract_base_name(target)}"
            existing_controls.add(new_input)
        elif ":" in target:
            new_input = target
        else:
            new_input = f"{target}{port}"
        updated_inputs.append(new_input)

    if hoisted_controls:
        for ctrl in sorted(hoisted_controls):
            if ctrl not in existing_controls:
                updated_inputs.append(ctrl)
                existing_controls.add(ctrl)

    del node.input[:]
    node.input.extend(updated_inputs)


# =======================
# Dead Node Pruning
# =======================


def remove_nodes(
    graph_def: tf.GraphDef,
    nodes_to_remove: Set[str],
    pass_name: str = None,
    reason: str = None,
    logger=None,
) -> tf.GraphDef:
    """Create new GraphDef without specified nodes."""
    pruned_graph_def = tf.GraphDef()
    for node in graph_def.node:
        if node.name not in nodes_to_remove:
            pruned_graph_def.node.add().CopyFrom(node)

    if logger and nodes_to_remove:
        prefix = f"[{pass_name}] " if pass_name else ""
        reason_str = f", reason: {reason}" if reason else ""
        for node_name in sorted(nodes_to_remove):
            logger.debug(f"{prefix}Deleted: {node_name}{reason_str}")

    return pruned_graph_def


def prune_dead_nodes(
    graph_def: tf.GraphDef,
    pass_name: str = None,
    refs_before: Dict[str, int] = None,
    protected_nodes: Set[str] = None,
    logger=None,
) -> tf.GraphDef:
    """
    Remove nodes that became dead after an optimization iteration.

    Strategy:
    - Prune nodes that had references before but now have none (newly dead)
    - Always prune Const nodes with zero references
    - Preserve Placeholder and protected nodes
    - Preserve nodes that were already unreferenced (likely outputs)
    """
    refs_after = compute_reference_counts(graph_def)
    protected_nodes = protected_nodes or set()

    dead_nodes = set()
    for node in graph_def.node:
        if node.op == "Placeholder" or node.name in protected_nodes:
            continue

        if node.op == "Const" and refs_after[node.name] == 0:
            dead_nodes.add(node.name)
            continue

        if refs_before and refs_before.get(node.name, 0) > 0:
            if refs_after[node.name] == 0:
                dead_nodes.add(node.name)

    if not dead_nodes:
        return graph_def

    if logger:
        logger.info(
            f"[{pass_name or 'optimize'}] Pruning {len(dead_nodes)} dead nodes: "
            f"{', '.join(sorted(dead_nodes)[:5])}"
            + (f" and {len(dead_nodes) - 5} more..." if len(dead_nodes) > 5 else "")
        )
    return remove_nodes(
        graph_def, dead_nodes, pass_name, "dead node (ref_count=0)", logger
    )


def final_prune(
    graph_def: tf.GraphDef,
    pass_name: str = None,
    protected_nodes: Set[str] = None,
    refs_before: Dict[str, int] = None,
    max_iterations: int = 100,
    logger=None,
) -> tf.GraphDef:
    """
    Final cleanup pass: iteratively removes dead nodes until none are left.

    With `refs_before`, only nodes that were referenced before the pass (or
    are constants) are candidates, so untouched graph outputs survive.
    """
    protected_nodes = protected_nodes or set()
    iteration = 0
    total_removed = 0

    while iteration < max_iterations:
        refs = compute_reference_counts(graph_def)

        dead_nodes = {
            node.name
            for node in graph_def.node
            if node.op != "Placeholder"
            and node.name not in protected_nodes
            and refs[node.name] == 0
            and (
                refs_before is None
                or node.op == "Const"
                or refs_before.get(node.name, 0) > 0
            )
        }

        if not dead_nodes:
            break

        graph_def = remove_nodes(
            graph_def, dead_nodes, pass_name, "final prune (ref_count=0)", logger
        )
        total_removed += len(dead_nodes)
        iteration += 1

    if logger:
        if iteration >= max_iterations:
            logger.warning(
                f"[{pass_name or 'optimize'}] Final prune reached max iterations ({max_iterations})"
            )
        elif total_removed > 0:
            logger.info(
                f"[{pass_name or 'optimize'}] Final prune: removed {total_removed} nodes "
                f"in {iteration} iteration(s)"
            )

    return graph_def
