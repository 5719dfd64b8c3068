"""Back up LUKS headers and replicate them to remote and local destinations."""

from .__version__ import __version__

__all__ = ["__version__"]
