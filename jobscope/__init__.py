"""jobscope - lifecycle recording and telemetry for background job workers."""

__version__ = "0.1.0"
