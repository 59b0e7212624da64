"""Library circulation backend: catalog, membership, loans and fees behind one dispatcher."""

__version__ = "0.1.0"
