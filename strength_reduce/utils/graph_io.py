import os
import tensorflow.compat.v1 as tf
from google.protobuf import text_format
from google.protobuf.message import DecodeError
from tensorflow.core.framework import node_def_pb2

from .logger import logger

TEXT_SUFFIXES = (".pbtxt", ".txt")


def create_node(op, name, inputs=None, attr=None):
    """Creates a NodeDef proto."""
    node = node_def_pb2.NodeDef()
    node.op = op
    node.name = name
    if inputs:
        node.input.extend(inputs)
    if attr:
        for k, v in attr.items():
            node.attr[k].CopyFrom(v)
    return node


def is_text_graph(path):
    return path.endswith(TEXT_SUFFIXES)


def save_graph(graph_def, path):
    """Writes a GraphDef as text (.pbtxt/.txt) or binary, creating parent dirs."""
    output_dir = os.path.dirname(path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    if is_text_graph(path):
        with open(path, "w") as f:
            f.write(text_format.MessageToString(graph_def))
    else:
        # Deterministic bytes so repeated runs produce identical files
        with open(path, "wb") as f:
            f.write(graph_def.SerializeToString(deterministic=True))
    logger.debug(f"Saved {len(graph_def.node)} nodes to {path}")


def load_graph(path):
    """Reads a GraphDef written by `save_graph` or by TensorFlow itself.

    Raises:
        FileNotFoundError: the file does not exist.
        ValueError: the file is not a parseable GraphDef.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Graph file not found: {path}")

    graph_def = tf.GraphDef()
    try:
        if is_text_graph(path):
            with open(path, "r") as f:
                text_format.Merge(f.read(), graph_def)
        else:
            with open(path, "rb") as f:
                graph_def.ParseFromString(f.read())
    except (text_format.ParseError, DecodeError) as e:
        raise ValueError(f"Cannot parse GraphDef from {path}: {e}") from e

    logger.debug(f"Loaded {len(graph_def.node)} nodes from {path}")
    return graph_def
