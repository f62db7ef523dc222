"""Persistence of run artifacts for PipelineOrchestrator."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from storyspec.memory.judge_rubric import GlobalConsistencyReport
from storyspec.memory.pipeline_state import PipelineResult

logger = logging.getLogger(__name__)

SYSTEM_CONTEXT_FILE = "system-context.json"
CONSISTENCY_REPORT_FILE = "consistency-report.json"
METADATA_FILE = "metadata.json"
STORIES_DIR = "stories"


def _write_json(path: Path, data: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)


def save_run(result: PipelineResult, output_dir: Path | str) -> Path:
    """Write a run's artifacts under ``output_dir``.

    Layout:
        system-context.json      converged shared model
        stories/<id>.md          rendered story with interconnection block
        stories/<id>.json        structure, rubric history, review flags
        consistency-report.json  issues and proposed fixes
        metadata.json            run metadata plus the merged relationships

    Args:
        result: Result of a pipeline run.
        output_dir: Target directory, created when missing.

    Returns:
        The output directory.
    """
    output_path = Path(output_dir)
    stories_path = output_path / STORIES_DIR
    stories_path.mkdir(parents=True, exist_ok=True)

    if result.context is not None:
        _write_json(output_path / SYSTEM_CONTEXT_FILE, result.context.to_wire())

    for story in result.stories:
        (stories_path / f"{story.story_id}.md").write_text(story.markdown + "\n", encoding="utf-8")
        _write_json(stories_path / f"{story.story_id}.json", story.to_wire())

    report = result.consistency_report or GlobalConsistencyReport()
    _write_json(output_path / CONSISTENCY_REPORT_FILE, report.to_wire())

    metadata = result.metadata.to_wire()
    metadata["success"] = result.success
    metadata["message"] = result.message
    metadata["relationships"] = [rel.to_wire() for rel in result.relationships]
    _write_json(output_path / METADATA_FILE, metadata)

    logger.info("Run artifacts saved to %s (%d stories)", output_path, len(result.stories))
    return output_path
