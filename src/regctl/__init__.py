"""regctl — time-driven registry resource lifecycle and integrity engine."""

__version__ = "0.4.0"
