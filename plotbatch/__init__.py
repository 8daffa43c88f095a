"""Batch orchestration for proof-of-space plotting: manifests, device lists, memory tiers and the batch pipeline."""

__version__ = "0.6.0"

__all__ = ["batch", "cancel", "devices", "manifest", "memory", "peaks", "tiers"]