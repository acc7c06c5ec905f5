"""
devpipe.build - Pipeline configuration, stages and orchestration.
"""

from devpipe.build.config import (
    ConfigError,
    Mode,
    PipelineConfig,
    build_config,
    load_config,
    select_mode,
)
from devpipe.build.errors import (
    ErrorKind,
    ErrorPolicy,
    PipelineAbort,
    StageError,
    StageResult,
)
from devpipe.build.graph import Stage, TaskGraph

__all__ = [
    # Configuration
    "ConfigError",
    "Mode",
    "PipelineConfig",
    "build_config",
    "load_config",
    "select_mode",
    # Errors
    "ErrorKind",
    "ErrorPolicy",
    "PipelineAbort",
    "StageError",
    "StageResult",
    # Graph
    "Stage",
    "TaskGraph",
]
