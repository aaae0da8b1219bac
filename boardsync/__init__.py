"""Task board / issue tracker reconciliation and synchronization service."""

__version__ = "1.0.0"
