"""
API dependencies — generation manager, persistence sink, pipeline.

The manager and sink are built once in the app lifespan and kept on
``app.state``; tests swap them through ``app.dependency_overrides``.
"""

from fastapi import Depends, Request

from portalsim.services.generation_manager import GenerationManager
from portalsim.services.persistence import PersistenceSink
from portalsim.services.scenario_pipeline import ScenarioPipeline


def get_generation_manager(request: Request) -> GenerationManager:
    return request.app.state.generation_manager


def get_sink(request: Request) -> PersistenceSink:
    return request.app.state.sink


def get_pipeline(sink: PersistenceSink = Depends(get_sink)) -> ScenarioPipeline:
    """A fresh pipeline per request so runs never share claim id sequences."""
    return ScenarioPipeline(sink)
