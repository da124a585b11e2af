"""
Rubedo - a queue-driven Icecast source client.

Rubedo streams music to an Icecast server around the clock. Songs requested
through the web front end are played in the order they were queued; whenever
the queue is empty, a random song from the music folder fills the gap.
"""

__version__ = "0.1.0"
__author__ = "Rubedo Contributors"
__license__ = "MIT"

from rubedo.station import RubedoStation

__all__ = ["RubedoStation", "__version__"]
