"""vidfx - dual-mode video effect pipeline."""

__version__ = "0.1.0"
