"""Real-time closed-loop coaching for competitive shooter matches."""

__version__ = "0.1.0"
