"""Game domain services: timers, sequencing, answers and the session state machine.

This package holds the game mechanics used by HTTP routes, socket handlers
and timer callbacks, keeping transport concerns out of the core.
"""

from .engine import GameEngine
from .timers import TimerRegistry

__all__ = ['GameEngine', 'TimerRegistry']
