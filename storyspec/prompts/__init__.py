"""Bundled YAML prompt templates, one directory per pipeline role."""
