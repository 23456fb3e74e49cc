"""Progressive depletion minting for a personal resource pool: configuration, the chained minting step, scheduling and stored state."""

__version__ = "1.0.0"
__all__ = ["config", "core", "schedule", "state"]