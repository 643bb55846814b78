"""sitebuild: static-site asset pipeline with incremental rebuilds and live reload."""

__version__ = "0.1.0"
