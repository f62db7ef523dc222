"""StorySpec - consistency-maintaining user story specification pipeline.

Turns a batch of free-text feature descriptions into structured, cross-consistent
story documents by threading a shared system model through discovery,
generation with refinement, interconnection and global consistency passes.
"""

__version__ = "0.1.0"
