"""BookPress: LaTeX book assembly, compilation and versioning pipeline."""

__version__ = "1.0.0"
