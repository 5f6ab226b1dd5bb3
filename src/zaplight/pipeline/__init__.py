"""Service wiring for Zaplight."""

from zaplight.pipeline.builder import BoostPipeline, build_pipeline, build_scheduler

__all__ = [
    "BoostPipeline",
    "build_pipeline",
    "build_scheduler",
]
