"""binfetch - fetch, verify and install single-file packages from repository indexes."""

__version__ = "0.1.0"
