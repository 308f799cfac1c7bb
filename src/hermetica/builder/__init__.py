"""Hermetic build execution."""

from hermetica.builder.hermetic import HermeticBuilder, source_tree_hash

__all__ = ["HermeticBuilder", "source_tree_hash"]
