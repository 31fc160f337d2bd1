"""Standard library of observers shipped with matrixci."""

from matrixci.stdlib.observers import CollectingObserver, LoggingObserver

__all__ = ["CollectingObserver", "LoggingObserver"]
