"""LocalLink - hyperlocal marketplace order lifecycle and sync engine."""

__version__ = "1.0.0"
