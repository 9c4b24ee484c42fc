"""DocSense — question-driven structured summaries of uploaded documents."""

__version__ = "1.0.0"
