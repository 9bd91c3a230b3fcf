"""Stemcell build pipeline and its workspace."""

from .orchestrator import StemcellPipeline
from .workspace import Workspace

__all__ = ["StemcellPipeline", "Workspace"]
