"""Deployment and verification on target web servers.

Public API::

    from acmepipe.deploy import DeploymentBinder, VerificationProbe, server_factory
"""

from acmepipe.deploy.base import TargetServer
from acmepipe.deploy.binder import DeploymentBinder
from acmepipe.deploy.registry import server_factory
from acmepipe.deploy.verify import VerificationProbe

__all__ = ["DeploymentBinder", "TargetServer", "VerificationProbe", "server_factory"]
