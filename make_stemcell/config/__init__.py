"""Configuration for stemcell builds."""

from .settings import DEFAULT_SETTINGS, StemcellConfig, load_settings

__all__ = ["DEFAULT_SETTINGS", "StemcellConfig", "load_settings"]
