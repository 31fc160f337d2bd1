"""Pipeline building: YAML definitions, matrix expansion, Initialize stage."""

from matrixci.kernel.pipeline_builder.initialize import (
    INITIALIZE_STAGE,
    SRCS_STASH,
    initialize_stage,
)
from matrixci.kernel.pipeline_builder.matrix import MatrixExpansion, expand
from matrixci.kernel.pipeline_builder.pipeline_config import PipelineDefinition
from matrixci.kernel.pipeline_builder.yaml_builder import YamlPipelineBuilder, load_pipeline

__all__ = [
    "INITIALIZE_STAGE",
    "MatrixExpansion",
    "PipelineDefinition",
    "SRCS_STASH",
    "YamlPipelineBuilder",
    "expand",
    "initialize_stage",
    "load_pipeline",
]
