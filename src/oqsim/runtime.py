"""Process-wide lifecycle.

``initialize()`` must run before the first ``SystemModel`` is created and
``finalize()`` after the last one is destroyed. ``finalize()`` is idempotent
and is also registered with ``atexit`` by the first ``initialize()``.
"""
from __future__ import annotations

import atexit
import logging
import weakref
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from oqsim.errors import NotReady

if TYPE_CHECKING:
    from oqsim.core.model.system import SystemModel

logger = logging.getLogger(__name__)


@dataclass
class _RuntimeState:
    initialized: bool = False
    atexit_registered: bool = False
    live_models: "weakref.WeakSet[Any]" = field(default_factory=weakref.WeakSet)


_state = _RuntimeState()


def initialize() -> None:
    if _state.initialized:
        logger.debug("oqsim runtime already initialized")
        return
    _state.initialized = True
    if not _state.atexit_registered:
        atexit.register(finalize)
        _state.atexit_registered = True
    logger.info("oqsim runtime initialized")


def finalize() -> None:
    if not _state.initialized:
        return
    live = list(_state.live_models)
    if live:
        logger.warning(
            "finalize() called with %d live model(s); destroying them", len(live)
        )
    _destroy_all(live)
    _state.initialized = False
    logger.info("oqsim runtime finalized")


def clear() -> None:
    """Destroy every live model but keep the runtime initialized."""
    _destroy_all(list(_state.live_models))


def is_initialized() -> bool:
    return _state.initialized


def require_initialized() -> None:
    if not _state.initialized:
        raise NotReady("oqsim must be initialized first (call oqsim.initialize())")


def register_model(model: "SystemModel") -> None:
    require_initialized()
    _state.live_models.add(model)


def unregister_model(model: "SystemModel") -> None:
    _state.live_models.discard(model)


def live_model_count() -> int:
    return len(_state.live_models)


def _destroy_all(models: list) -> None:
    for m in models:
        if not m.destroyed:
            m.destroy()
