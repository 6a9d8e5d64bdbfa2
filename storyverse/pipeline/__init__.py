"""Six-stage transformation pipeline.

Import from the submodules (``storyverse.pipeline.runner`` etc.).
"""
