from .graph_io import (
    create_node,
    save_graph,
    load_graph,
)
from .graph_utils import (
    extract_base_name,
    data_inputs,
    shapes_compatible,
    broadcast_preserves,
    create_const_node,
    make_type_attr,
    make_output_shapes_attr,
    compute_reference_counts,
    build_consumer_index,
    update_node_inputs,
    remove_nodes,
    prune_dead_nodes,
    final_prune,
)
from .logger import logger

__all__ = [
    # graph_io
    "create_node",
    "save_graph",
    "load_graph",
    # graph_utils
    "extract_base_name",
    "data_inputs",
    "shapes_compatible",
    "broadcast_preserves",
    "create_const_node",
    "make_type_attr",
    "make_output_shapes_attr",
    "compute_reference_counts",
    "build_consumer_index",
    "update_node_inputs",
    "remove_nodes",
    "prune_dead_nodes",
    "final_prune",
    # logger
    "logger",
]
