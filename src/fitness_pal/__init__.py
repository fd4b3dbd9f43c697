"""Fitness Pal - Incremental Generation Stream Engine.

The client-side engine that consumes chunked generation streams for
workout creation, knowledge-base chat and profile overviews, supports
pausing for human feedback, and mirrors finished turns to durable storage.
"""

__version__ = "0.1.0"
__author__ = "Fitness Pal Team"
__email__ = "team@fitnesspal.app"

# Package metadata
__all__ = [
    "__version__",
    "__author__",
    "__email__",
]
