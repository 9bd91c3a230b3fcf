"""Domain models for stemcell builds."""

from .models import PipelineState, StemcellManifest, stemcell_filename

__all__ = ["PipelineState", "StemcellManifest", "stemcell_filename"]
