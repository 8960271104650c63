"""
Spout Runtime - component wiring for one relayer process.
"""

from spoutrelay.runtime.context import RelayerContext

__all__ = ["RelayerContext"]
