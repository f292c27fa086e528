"""Logging subsystem for ACMEPIPE.

Public API::

    from acmepipe.logging import configure_logging

    configure_logging(settings.logging)
"""

from acmepipe.logging.setup import configure_logging, pipeline_context

__all__ = ["configure_logging", "pipeline_context"]
