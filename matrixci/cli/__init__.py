"""Command-line interface for matrixci."""
