import logging
import functools
import time

# Define Log Levels
DEBUG = logging.DEBUG
INFO = logging.INFO
WARNING = logging.WARNING
ERROR = logging.ERROR

LOG_FORMAT = (
    "%(asctime)s - [%(levelname)s] - %(name)s - [%(filename)s:%(lineno)d] - %(message)s"
)


# Singleton logger setup
def get_logger(name="StrengthReduce"):
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


logger = get_logger()


def set_log_level(level):
    logger.setLevel(level)


def add_file_handler(path):
    """Mirrors the package log into `path`; returns the handler."""
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return handler


def remove_file_handler(handler):
    logger.removeHandler(handler)
    handler.close()


def remove_file_handlers():
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()


def _pass_prefix(optimizer):
    pass_name = getattr(optimizer, "current_pass_name", None)
    return f"[{pass_name}] " if pass_name else ""


def trace_transformation(func):
    """Aspect: Log when a transformation/rewriter is executed."""

    @functools.wraps(func)
    def wrapper(match, optimizer, *args, **kwargs):
        start_time = time.time()
        result = func(match, optimizer, *args, **kwargs)
        duration = (time.time() - start_time) * 1000

        prefix = _pass_prefix(optimizer)
        if result is not None:
            node_count = (
                len(result.new_nodes) if hasattr(result, "new_nodes") else len(result)
            )
            anchor = match.matched_nodes.get("root")
            anchor_name = anchor.name if anchor is not None else "unknown"
            logger.info(
                f"{prefix}Rewriter {func.__name__} matched at {anchor_name}, "
                f"generated {node_count} nodes ({duration:.2f}ms)"
            )
        else:
            logger.debug(f"{prefix}Rewriter {func.__name__} returned None")
        return result

    return wrapper


def log_optimization(func):
    """Aspect: Log the overall optimization process."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        pass_name = kwargs.get("pass_name")
        if pass_name is None and len(args) > 0:
            pass_name = args[0]

        prefix = f"[{pass_name}] " if pass_name else ""
        original_node_count = len(self.graph_def.node)
        logger.info(
            f"{prefix}Starting graph optimization pass... ({original_node_count} nodes)"
        )
        start_time = time.time()

        result_graph = func(self, *args, **kwargs)

        duration = time.time() - start_time
        logger.info(
            f"{prefix}Optimization finished in {duration:.3f}s. "
            f"Nodes: {original_node_count} -> {len(result_graph.node)}"
        )
        return result_graph

    return wrapper


def log_match(func):
    """Aspect: Log matching attempts (DEBUG level)."""

    @functools.wraps(func)
    def wrapper(self, node, optimizer, context=None):
        res = func(self, node, optimizer, context)
        if res:
            logger.debug(
                f"{_pass_prefix(optimizer)}Matched pattern on node: {node.name} (Op: {node.op})"
            )
        return res

    return wrapper
