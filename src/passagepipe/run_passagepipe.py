#!/usr/bin/env python3
"""
passagepipe - resumable batch inference over document collections

Splits every document into prompt units, runs them through a local language
model spread over the available devices, and writes the results to the
task's sinks. Progress is checkpointed after every batch, so an interrupted
run continues where it stopped.

Usage:
    # Translate a folder of markdown files with the defaults from config.yaml
    passagepipe --input data/to_translate --output output/translated

    # Keyword-decorate passages into the vector index, first 10 documents
    passagepipe --task decorate --input data/docs --limit 10

    # Create a config.yaml to edit
    passagepipe --init-config
"""

import argparse
import logging
import os
import sys

from passagepipe import __version__
from passagepipe.core.errors import PassagePipeError
from passagepipe.core.llm import setup_logging
from passagepipe.pipeline.tasks import TASKS


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="passagepipe: resumable batch inference over document collections",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Translate every .txt/.md file of a folder
  passagepipe -i data/to_translate -o output/translated --task translate

  # Process pre-formed documents from a JSON-lines file
  passagepipe --input-jsonl data/documents.jsonl -o output/prompted --task prompt

  # Start over, ignoring the saved progress
  passagepipe -i data/docs --reset

Tasks:
  prompt     passage sent as-is, results in <name>.jsonl
  translate  passage translated, results in <name>.jsonl and <name>_translated.md
  decorate   keywords generated per passage, stored in the vector index

Environment Variables:
  PASSAGEPIPE_CONFIG      - Path to config file (default: config.yaml)
  PASSAGEPIPE_INPUT_DIR   - Input directory (overrides config.yaml)
  PASSAGEPIPE_OUTPUT_DIR  - Output directory (overrides config.yaml)
"""
    )

    # Input / output
    parser.add_argument(
        "--input", "-i",
        type=str,
        help="Input directory containing .txt/.md documents"
    )
    parser.add_argument(
        "--input-jsonl",
        type=str,
        help="JSON-lines file of {id, content, name} documents (takes precedence over --input)"
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        help="Output directory for results and the progress file"
    )

    # Configuration
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to configuration file (default: $PASSAGEPIPE_CONFIG or ./config.yaml)"
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Generate a config.yaml file in the current directory and exit"
    )

    # Run options
    parser.add_argument(
        "--task", "-t",
        type=str,
        choices=sorted(TASKS),
        help="Task to run (default from config: translate)"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        help="Documents per checkpointed batch (default: 2)"
    )
    parser.add_argument(
        "--limit",
        type=int,
        help="Stop once this many documents are done (default: all)"
    )
    parser.add_argument(
        "--devices",
        type=int,
        help="Number of model instances / devices (default: 2)"
    )
    parser.add_argument(
        "--checkpoint",
        type=str,
        help="Progress file (default: output/progress.json)"
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete the progress file before running"
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bars"
    )

    # Output options
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser.parse_args(argv)


def setup_environment(args):
    """Set up environment variables based on arguments (override config.yaml)."""
    if args.config:
        os.environ["PASSAGEPIPE_CONFIG"] = args.config
    if args.input:
        os.environ["PASSAGEPIPE_INPUT_DIR"] = args.input
    if args.input_jsonl:
        os.environ["PASSAGEPIPE_INPUT_JSONL"] = args.input_jsonl
    if args.output:
        os.environ["PASSAGEPIPE_OUTPUT_DIR"] = args.output
    if args.checkpoint:
        os.environ["PASSAGEPIPE_CHECKPOINT"] = args.checkpoint
    if args.task:
        os.environ["PASSAGEPIPE_TASK"] = args.task
    if args.batch_size is not None:
        os.environ["PASSAGEPIPE_BATCH_SIZE"] = str(args.batch_size)
    if args.limit is not None:
        os.environ["PASSAGEPIPE_ITEM_LIMIT"] = str(args.limit)
    if args.devices is not None:
        os.environ["PASSAGEPIPE_DEVICE_COUNT"] = str(args.devices)


def main(argv=None):
    """Main entry point for the passagepipe CLI."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)
    logger = logging.getLogger(__name__)

    logger.info("=" * 70)
    logger.info(f"  passagepipe {__version__}")
    logger.info("=" * 70)

    from passagepipe.api import PassagePipe, PipelineConfig
    from passagepipe.core.config import init_config, load_config
    from passagepipe.utils.device import is_gpu_available, setup_device_environment

    if args.init_config:
        try:
            target = init_config()
        except PassagePipeError as e:
            logger.error(str(e))
            sys.exit(1)
        logger.info(f"Generated config.yaml at {target}")
        logger.info("Edit this file to configure your pipeline settings.")
        sys.exit(0)

    setup_environment(args)

    try:
        config = PipelineConfig.from_mapping(load_config(args.config, reload=True),
                                             config_file=args.config)
        config.show_progress = not args.no_progress
        if config.log_file:
            setup_logging(verbose=args.verbose, log_file=config.log_file)

        logger.info(f"Task: {config.task}")
        logger.info(f"Input: {config.input_jsonl or config.input_dir}")
        logger.info(f"Output directory: {config.output_dir}")
        logger.info(f"Batch size: {config.batch_size}, devices: {config.device_count}, "
                    f"limit: {config.item_limit if config.item_limit is not None else 'all'}")

        setup_device_environment(config.gpus)
        logger.info(f"GPU available: {is_gpu_available()}")

        pipeline = PassagePipe(config)
        if args.reset and pipeline.reset():
            logger.info(f"Removed progress file {config.checkpoint_file}")

        results = pipeline.run()
    except (PassagePipeError, FileNotFoundError) as e:
        logger.error(str(e))
        sys.exit(1)

    stats_path = results.save()
    logger.info("=" * 70)
    logger.info("Run complete!")
    logger.info("=" * 70)
    logger.info(f"Documents processed: {results.documents_processed} "
                f"in {results.batches_processed} batches")
    logger.info(f"Prompt units: {results.units_total} "
                f"({results.units_failed} failed)")
    logger.info(f"Results saved to: {config.output_dir}")
    logger.info(f"Run statistics: {stats_path}")


if __name__ == "__main__":
    main()
