__version__ = "2026.10.17a1"
