"""Path constants for StorySpec settings and run output."""

from pathlib import Path

SETTINGS_FILE = Path(__file__).parent.parent / "settings.json"

# storyspec/settings -> storyspec -> project root -> output/
OUTPUT_DIR = Path(__file__).parent.parent.parent / "output"
RUNS_DIR = OUTPUT_DIR / "runs"

__all__ = [
    "OUTPUT_DIR",
    "RUNS_DIR",
    "SETTINGS_FILE",
]
