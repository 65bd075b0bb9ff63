"""Video-to-training-module pipeline and question answering core."""

__version__ = "0.1.0"
