"""Release Pipeline - tag-triggered release build orchestration.

This package turns a version-tag push into exactly one published build
artifact: it resolves a build-environment cache key, runs the build in an
isolated environment, and publishes the result to an artifact sink.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
