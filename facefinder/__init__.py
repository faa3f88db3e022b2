"""
Core package init for FaceFinder.

Makes the `facefinder` modules importable without requiring an editable install.
"""

__all__ = [
    "catalog",
    "config",
    "enrichment",
    "errors",
    "export",
    "filtering",
    "io_utils",
    "metadata",
    "pipeline",
    "recognition",
    "services",
    "types",
]
