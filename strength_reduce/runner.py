import os
import time
import datetime
import traceback
from typing import List, Optional, Dict, Any, Iterable

import tensorflow.compat.v1 as tf

from .core import GraphOptimizer, OptimizationContext, PassRegistry
from .utils import load_graph, save_graph, logger as custom_logger
from .utils.logger import add_file_handler, remove_file_handler


class OptimizationPipeline:
    """
    A facade class to configure and run the graph optimization process.
    """

    def __init__(
        self,
        input_graph: Optional[str] = None,
        output_graph: Optional[str] = None,
        graph_def=None,
        level: int = 1,
        debug: bool = False,
        passes: Optional[List[str]] = None,
        add_passes: Optional[List[str]] = None,
        remove_passes: Optional[List[str]] = None,
        log_file: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        protected_nodes: Optional[Iterable[str]] = None,
        output_nodes: Optional[Iterable[str]] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            input_graph (str, optional): Path to input graph (.pb or .pbtxt).
            output_graph (str, optional): Path to save optimized graph.
            graph_def (GraphDef, optional): Input graph_def object (takes priority over input_graph).
            level (int): Optimization level. Default 1.
            debug (bool): Enable debug mode (dump intermediate files). Default False.
            passes (list[str]): Explicit list of passes to run (overrides level).
            add_passes (list[str]): List of passes to append to the default set.
            remove_passes (list[str]): List of passes to remove from the set.
            log_file (str): Path to log file.
            config (dict): Optional configuration overrides. Keys match constructor
                           args; explicit constructor values win for paths.
            protected_nodes (Iterable[str], optional): Nodes to protect from pruning.
            output_nodes (Iterable[str], optional): Output nodes (automatically protected).
        """
        self.input_graph = input_graph
        self.graph_def = graph_def
        self.output_graph = output_graph
        self.level = level
        self.debug = debug
        self.passes = passes
        self.add_passes = list(add_passes or [])
        self.remove_passes = list(remove_passes or [])
        self.log_file = log_file
        self.output_nodes = list(output_nodes or [])
        self.protected_nodes = list(protected_nodes or [])

        if config:
            self._apply_config(config)

        # Output nodes are always protected from pruning
        for node_name in self.output_nodes:
            if node_name not in self.protected_nodes:
                self.protected_nodes.append(node_name)

        self.debug_dir = None
        self._file_handler = None
        self.resolved_passes = []
        self.context = None

    def _apply_config(self, config):
        """Merges configuration dict into instance attributes."""
        if "input_graph" in config and not self.input_graph:
            self.input_graph = config["input_graph"]
        if "output_graph" in config and not self.output_graph:
            self.output_graph = config["output_graph"]
        if "level" in config:
            self.level = config["level"]
        if "debug" in config:
            self.debug = config["debug"] or self.debug
        if "log_file" in config and not self.log_file:
            self.log_file = config["log_file"]
        if "passes" in config and not self.passes:
            self.passes = config["passes"]
        if "add_passes" in config:
            self.add_passes.extend(config["add_passes"])
        if "remove_passes" in config:
            self.remove_passes.extend(config["remove_passes"])
        if "protected_nodes" in config:
            self.protected_nodes.extend(config["protected_nodes"])
        if "output_nodes" in config:
            self.output_nodes.extend(config["output_nodes"])

    def _setup_logging_and_debug(self):
        """Configures logging and creates debug directory."""
        if self.debug:
            timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
            self.debug_dir = f"run_{timestamp}"
            os.makedirs(self.debug_dir, exist_ok=True)
            # Redirect log to debug dir if not explicit
            if not self.log_file:
                self.log_file = os.path.join(self.debug_dir, "optimization.log")

        if self.log_file:
            self._file_handler = add_file_handler(self.log_file)
            custom_logger.info(f"Logging to file: {self.log_file}")

    def _resolve_passes(self):
        """Determines the final list of passes to execute."""
        if self.passes:
            final_passes = list(self.passes)
            custom_logger.debug(f"Using explicit pass list: {final_passes}")
        else:
            final_passes = PassRegistry.get_passes_by_level(self.level)
            custom_logger.info(
                f"Selected passes for Level {self.level}: {final_passes}"
            )

            for p in self.add_passes:
                if p not in final_passes:
                    final_passes.append(p)
                    custom_logger.debug(f"Added pass: {p}")

            for p in self.remove_passes:
                if p in final_passes:
                    final_passes.remove(p)
                    custom_logger.debug(f"Removed pass: {p}")
                else:
                    custom_logger.warning(
                        f"Pass '{p}' in remove_passes was not in the list"
                    )

            # Added passes may be out of order
            final_passes.sort(key=PassRegistry.get_pass_priority)

        self.resolved_passes = final_passes

    def _execute_main_passes(self, optimizer, context):
        """Runs every resolved pass, rolling back the graph of a pass that raises."""
        for i, pass_name in enumerate(self.resolved_passes):
            if pass_name not in PassRegistry._registered_passes:
                custom_logger.warning(
                    f"Pass '{pass_name}' not found in registry. Skipping."
                )
                continue

            backup_graph = tf.GraphDef()
            backup_graph.CopyFrom(optimizer.graph_def)
            try:
                pass_instance = PassRegistry.get_pass(pass_name)
                optimizer.clear_transformations()
                pass_instance.transform(
                    optimizer,
                    step=i + 1,
                    debug_dir=self.debug_dir,
                    context=context,
                )
            except Exception as e:
                custom_logger.error(f"Error applying pass '{pass_name}': {e}")
                custom_logger.debug(f"Full traceback:\n{traceback.format_exc()}")
                custom_logger.warning(
                    f"Rolling back graph state before pass '{pass_name}'..."
                )
                optimizer.load_state(backup_graph)

    def _load_input(self):
        # Priority: graph_def > input_graph
        if self.graph_def is not None:
            custom_logger.debug("Using provided graph_def object")
            return self.graph_def
        if self.input_graph:
            custom_logger.info(f"Loading graph from {self.input_graph}")
            try:
                return load_graph(self.input_graph)
            except Exception as e:
                custom_logger.error(f"Failed to load graph: {e}")
                raise
        raise ValueError("Either graph_def or input_graph must be provided.")

    def run(self):
        """Executes the optimization pipeline and returns the optimized GraphDef."""
        self._setup_logging_and_debug()
        try:
            return self._run()
        finally:
            # The log file belongs to this run only
            if self._file_handler is not None:
                remove_file_handler(self._file_handler)
                self._file_handler = None

    def _run(self):
        self._resolve_passes()
        graph_def = self._load_input()

        custom_logger.info("Initializing optimizer...")
        optimizer = GraphOptimizer(graph_def)
        initial_node_count = len(optimizer.nodes)

        if self.debug_dir:
            save_graph(optimizer.graph_def, os.path.join(self.debug_dir, "00_initial.pb"))

        custom_logger.info(
            f"Applying {len(self.resolved_passes)} passes: {self.resolved_passes}"
        )
        if self.protected_nodes:
            custom_logger.info(
                f"Protected nodes ({len(self.protected_nodes)}): {self.protected_nodes}"
            )

        self.context = OptimizationContext(
            protected_nodes=self.protected_nodes,
            auto_cleanup=True,
            debug_dir=self.debug_dir,
        )

        start_time = time.time()
        self._execute_main_passes(optimizer, self.context)
        total_time = time.time() - start_time
        final_node_count = len(optimizer.nodes)

        if self.output_graph:
            custom_logger.info(f"Saving optimized graph to {self.output_graph}")
            save_graph(optimizer.graph_def, self.output_graph)

        if self.debug_dir:
            save_graph(optimizer.graph_def, os.path.join(self.debug_dir, "final.pb"))

        self._log_final_summary(
            self.context, initial_node_count, final_node_count, total_time
        )
        return optimizer.graph_def

    def _log_final_summary(self, context, initial_node_count, final_node_count, total_time):
        """Log final optimization summary with per-pass statistics."""
        nodes_removed = initial_node_count - final_node_count

        custom_logger.info("=" * 70)
        custom_logger.info("OPTIMIZATION SUMMARY")
        custom_logger.info("=" * 70)

        if context._pass_stats:
            custom_logger.info("Per-Pass Statistics:")
            custom_logger.info("-" * 70)
            custom_logger.info(
                f"{'Pass':<30} {'Iters':>6} {'Changes':>8} {'Nodes':>15} {'Time':>8}"
            )
            custom_logger.info("-" * 70)

            for pass_name, stats in context._pass_stats.items():
                nodes_str = f"{stats['nodes_before']} -> {stats['nodes_after']}"
                custom_logger.info(
                    f"  {pass_name:<28} {stats['iterations']:>6} {stats['total_changes']:>8} "
                    f"{nodes_str:>15} {stats['duration']:>7.3f}s"
                )
                for node_name, reason in stats["failed"]:
                    custom_logger.warning(f"    rewrite failed at {node_name}: {reason}")

            custom_logger.info("-" * 70)

        custom_logger.info("Overall:")
        custom_logger.info(f"  Total passes executed: {len(context._pass_stats)}")
        custom_logger.info(f"  Total time: {total_time:.3f}s")
        custom_logger.info(
            f"  Nodes: {initial_node_count} -> {final_node_count} (removed: {nodes_removed})"
        )
        if initial_node_count > 0:
            reduction_pct = (nodes_removed / initial_node_count) * 100
            custom_logger.info(f"  Reduction: {reduction_pct:.1f}%")
        custom_logger.info("=" * 70)
