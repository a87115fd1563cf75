"""Build execution module.

This module handles:
- Isolated, disposable build environments
- Environment provisioning and snapshot materialization
- Source checkout and build command execution
- Build run records
"""

from release_pipeline.builds.models import BuildRun

__all__ = ["BuildRun"]

# Access executor, environment and checkout via their submodules
