"""Video upload service: object store uploads with SQL metadata and correlated request logs."""

__version__ = "1.0.0"
