"""Publisher adapters."""

from matrixci.adapters.publishers.local import LocalDirectoryPublisher
from matrixci.adapters.publishers.recording import RecordingPublisher, Upload

__all__ = ["LocalDirectoryPublisher", "RecordingPublisher", "Upload"]
