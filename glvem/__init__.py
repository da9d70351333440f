"""glvem: Estimate gLV parameters and latent biomass from relative abundances."""
from importlib.metadata import version

__all__ = ["__version__"]

try:
    __version__ = version("glvem")
except Exception:  # pragma: no cover - package metadata not available in dev
    __version__ = "0.1.0"
