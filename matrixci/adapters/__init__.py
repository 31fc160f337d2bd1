"""Adapters implementing the matrixci ports."""
