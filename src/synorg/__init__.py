"""Work-item leasing, execution and reconciliation engine for repository agents."""

__version__ = "0.1.0"
