from __future__ import annotations

from sqlgate.engines.base import EngineDriver


class DefaultDriver(EngineDriver):
    """Fallback for engines without a dedicated driver: no session controls, ``?`` placeholders."""

    engine_id = "default"
