"""Release pipeline orchestration.

This module handles:
- Trigger validation (release tags, commit hashes)
- Pipeline definition loading (relpipe.yaml)
- The pipeline engine and its run state machine
- Build run queries
"""

# Access engine, triggers, definition and service via their submodules
