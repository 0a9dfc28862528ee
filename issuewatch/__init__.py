"""Issue monitoring, knowledge retrieval and auto-reply pipeline."""

from .__version__ import __version__

__all__ = ["__version__"]
