"""Target server registry.

Resolves ``deploy.backend`` to a :class:`TargetServer` class.  Supports
the built-in ``rest`` backend and custom backends via the ``ext:``
prefix; custom classes are constructed as ``cls(server, settings,
http_settings)``.
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from acmepipe.deploy.base import TargetServer
from acmepipe.errors import TargetServerError

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmepipe.config.settings import DeploySettings, HttpSettings

log = logging.getLogger(__name__)

_BUILTIN_BACKENDS: dict[str, tuple[str, str]] = {
    "rest": ("acmepipe.deploy.rest", "RestTargetServer"),
}


def server_factory(
    settings: DeploySettings,
    http_settings: HttpSettings,
) -> Callable[[str], TargetServer]:
    """Return a callable building a :class:`TargetServer` for a host name."""
    backend = settings.backend
    if backend in _BUILTIN_BACKENDS:
        mod_path, cls_name = _BUILTIN_BACKENDS[backend]
    elif backend.startswith("ext:"):
        mod_path, _, cls_name = backend[4:].rpartition(".")
        if not mod_path:
            msg = f"Invalid external deploy backend '{backend}': must be fully qualified"
            raise TargetServerError(msg)
    else:
        msg = (
            f"Unknown deploy backend '{backend}'; built-in options: "
            f"{sorted(_BUILTIN_BACKENDS)}. "
            "Use 'ext:mypackage.module.ClassName' for custom backends."
        )
        raise TargetServerError(msg)

    try:
        module = importlib.import_module(mod_path)
        cls = getattr(module, cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load deploy backend '{backend}': {exc}"
        raise TargetServerError(msg) from exc

    if not (isinstance(cls, type) and issubclass(cls, TargetServer)):
        msg = f"Deploy backend '{backend}' must be a subclass of TargetServer"
        raise TargetServerError(msg)
    log.info("Using deploy backend: %s", backend)

    def build(server: str) -> TargetServer:
        return cls(server, settings, http_settings)

    return build
