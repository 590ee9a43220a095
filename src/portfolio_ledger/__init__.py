"""Top-level package for the simulated portfolio ledger."""

__all__ = [
    "core",
    "ledger",
    "analytics",
    "events",
    "storage",
    "data",
    "execution",
    "scheduler",
    "monitoring",
]
