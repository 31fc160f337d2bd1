"""matrixci: a continuous-integration orchestrator for variant-matrix builds.

A pipeline compiles a project across a matrix of build variants, tests the
artifacts on matching workers and publishes them from publishable branches.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("matrixci")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"

from matrixci.kernel.domain.run import RunResult, RunStatus
from matrixci.kernel.pipeline_builder.yaml_builder import YamlPipelineBuilder, load_pipeline
from matrixci.kernel.pipeline_runner import PipelineRunner, Trigger

__all__ = [
    "PipelineRunner",
    "RunResult",
    "RunStatus",
    "Trigger",
    "YamlPipelineBuilder",
    "__version__",
    "load_pipeline",
]
