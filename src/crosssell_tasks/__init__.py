"""Cross-sell opportunity to task materialization pipeline."""

__version__ = "0.1.0"
