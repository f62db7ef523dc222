"""Utility modules for StorySpec."""
