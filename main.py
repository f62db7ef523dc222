#!/usr/bin/env python3
"""StorySpec - consistency-maintaining user story pipeline.

Turns a batch of free-text feature descriptions into structured,
cross-consistent story documents:
- Discovery: Builds the shared system model from every story
- Generation: Writes each story, runs advisors and the quality gate
- Refinement: Merges discovered relationships until convergence
- Interconnection: Links stories to components, contracts and each other
- Consistency: Detects cross-story issues and applies safe fixes

Usage:
    python main.py stories.json                  # Run and save to output/runs/
    python main.py stories.json --output out/    # Save to a chosen directory
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from storyspec.memory.pipeline_state import PipelineInput, PipelineResult
from storyspec.utils.exceptions import ConfigError, StorySpecError
from storyspec.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def load_input(path: Path) -> PipelineInput:
    """Read the run input JSON.

    Accepts ``{"stories": [...], "referenceDocuments": [...], "images": [...],
    "productContext": {...}}`` or a bare list of story strings.

    Raises:
        ConfigError: If the file is missing, not JSON, or has the wrong shape.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read input file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Input file {path} is not valid JSON: {e}") from e

    if isinstance(data, list):
        data = {"stories": data}
    if not isinstance(data, dict):
        raise ConfigError(f"Input file {path} must hold a JSON object or a list of stories")
    try:
        return PipelineInput.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid input in {path}: {e.error_count()} error(s)") from e


def print_summary(result: PipelineResult, output_dir: Path | None) -> None:
    print(result.message)
    if not result.stories:
        return
    print("-" * 40)
    for story in result.stories:
        score = f"{story.final_score:.1f}" if story.final_score is not None else "n/a"
        flag = "  [manual review]" if story.needs_manual_review else ""
        print(f"{story.story_id}  score={score}  {story.structure.title}{flag}")
    print("-" * 40)
    meta = result.metadata
    print(f"Passes: {', '.join(meta.passes_completed)}")
    print(f"Refinement: {meta.refinement_rounds} round(s), {meta.loop_state}")
    print(f"Manual review items: {len(meta.manual_review)}")
    print(f"Model calls: {meta.model_calls} ({meta.input_tokens} in / {meta.output_tokens} out tokens)")
    if output_dir is not None:
        print(f"Artifacts: {output_dir}")


def run(args: argparse.Namespace) -> int:
    """Run the pipeline for parsed CLI arguments and return the exit code."""
    from storyspec.services.pipeline import PipelineOrchestrator
    from storyspec.settings import Settings

    pipeline_input = load_input(Path(args.input))

    settings = Settings.load()
    if args.model:
        settings.default_model = args.model
        settings.role_models = dict.fromkeys(settings.role_models, args.model)
        logger.info("Model override for every role: %s", args.model)

    orchestrator = PipelineOrchestrator(settings, advisors_enabled=not args.no_advisors)
    result = orchestrator.run(pipeline_input)

    output_dir = None
    if result.stories:
        output_dir = orchestrator.save(result, args.output)
    print_summary(result, output_dir)
    return 0


def main() -> None:
    """Main entry point."""
    t0 = time.perf_counter()
    parser = argparse.ArgumentParser(
        description="StorySpec - structured, cross-consistent user stories"
    )
    parser.add_argument("input", help="JSON file with stories and optional context")
    parser.add_argument(
        "--output",
        type=str,
        metavar="DIR",
        help="Directory for run artifacts (default: output/runs/<timestamp>-<run id>)",
    )
    parser.add_argument(
        "--model",
        type=str,
        metavar="NAME",
        help="Use this model for every pipeline role",
    )
    parser.add_argument(
        "--no-advisors",
        action="store_true",
        help="Skip the advisor passes after generation",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default="default",
        help="Log file path (default: output/logs/storyspec.log, use 'none' to disable)",
    )

    args = parser.parse_args()

    log_file = None if args.log_file.lower() == "none" else args.log_file
    setup_logging(level=args.log_level, log_file=log_file)

    try:
        exit_code = run(args)
    except ConfigError as e:
        logger.error("Invalid input: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1
    except ValueError as e:
        logger.error("Invalid settings: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1
    except StorySpecError as e:
        logger.error("Pipeline failed: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1

    logger.info("Finished in %.2fs (exit code %d)", time.perf_counter() - t0, exit_code)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
