"""VPS backup, retention and restore tooling."""

__version__ = "0.1.0"
__author__ = "VPS Backup Team"
