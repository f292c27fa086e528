"""Pipeline orchestration for ACMEPIPE.

Public API::

    from acmepipe.pipeline import Orchestrator, PipelineRequest

    orchestrator = Orchestrator.from_settings(settings, hooks=hooks)
    result = orchestrator.run(PipelineRequest(domain, target))
"""

from acmepipe.pipeline.orchestrator import Orchestrator, PipelineRequest

__all__ = ["Orchestrator", "PipelineRequest"]
