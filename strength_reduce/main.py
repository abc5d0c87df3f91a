import argparse
import json
import sys

from . import transforms  # Register all passes
from .core import PassRegistry
from .runner import OptimizationPipeline
from .utils.logger import logger as custom_logger, set_log_level, DEBUG

# Prevent unused import warning
_ = transforms


def _split_names(value):
    if not value:
        return None
    return [n.strip() for n in value.split(",") if n.strip()]


def build_parser():
    parser = argparse.ArgumentParser(
        description="Pow strength reduction for TensorFlow graphs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Rewrite a frozen graph, keeping the 'logits' output
  strength-reduce --input model.pb --output model_opt.pb --output-nodes logits

  # Use a config file, overriding the output path
  python -m strength_reduce.main --config config.json --output out.pbtxt

  # Dump every intermediate graph into run_<timestamp>/
  strength-reduce --config config.json --debug

Config file format (JSON):
  {
    "input_graph": "path/to/input.pb",
    "output_graph": "path/to/output.pb",
    "level": 1,
    "debug": false,
    "output_nodes": ["output1"],
    "protected_nodes": ["important_node"],
    "passes": ["pow_strength_reduction"],
    "add_passes": [],
    "remove_passes": [],
    "log_file": "optimization.log"
  }
        """,
    )
    parser.add_argument("--config", help="Path to JSON configuration file")
    parser.add_argument("--input", help="Override input graph path")
    parser.add_argument("--output", help="Override output graph path")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (dump intermediate graphs, verbose logging)",
    )
    parser.add_argument(
        "--level",
        type=int,
        default=None,
        help="Optimization level (default: 1)",
    )
    parser.add_argument(
        "--passes",
        help="Comma-separated list of passes to run (overrides --level)",
    )
    parser.add_argument(
        "--output-nodes",
        help="Comma-separated list of output node names (protected from pruning)",
    )
    parser.add_argument(
        "--protected-nodes",
        help="Comma-separated list of additional nodes to protect from pruning",
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument(
        "--list-passes",
        action="store_true",
        help="Print the registered passes and exit",
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    if args.list_passes:
        for name in PassRegistry.list_available_passes():
            meta = PassRegistry._pass_metadata[name]
            print(f"{name}\topt_level={meta['opt_level']}\tpriority={meta['priority']}")
        return 0

    config = {}
    if args.config:
        try:
            with open(args.config, "r") as f:
                config = json.load(f)
        except (OSError, ValueError) as e:
            custom_logger.error(f"Failed to load config file: {e}")
            sys.exit(1)

    # Command line values take precedence over the config file
    if args.level is not None:
        config["level"] = args.level

    if args.debug:
        set_log_level(DEBUG)

    try:
        pipeline = OptimizationPipeline(
            input_graph=args.input,
            output_graph=args.output,
            debug=args.debug,
            passes=_split_names(args.passes),
            log_file=args.log_file,
            output_nodes=_split_names(args.output_nodes),
            protected_nodes=_split_names(args.protected_nodes),
            config=config,
        )
        pipeline.run()
    except Exception as e:
        custom_logger.error(f"Optimization failed: {e}")
        sys.exit(1)
    return 0


if __name__ == "__main__":
    sys.exit(main())
