"""Build vSphere stemcells from a base VHD and an rdiff delta."""

from .__version__ import __version__

__all__ = ["__version__"]
