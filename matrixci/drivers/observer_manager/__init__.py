"""Observer manager drivers."""

from matrixci.drivers.observer_manager.local import FunctionObserver, LocalObserverManager

__all__ = ["FunctionObserver", "LocalObserverManager"]
