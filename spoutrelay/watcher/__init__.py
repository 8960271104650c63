"""
Order event polling.
"""

from spoutrelay.watcher.watcher import EventWatcher, TickReport

__all__ = ["EventWatcher", "TickReport"]
