"""
Utility modules for the Exam Deduplicator package.

This package contains the record store backends and utility functions for
preprocessing, survivor selection, I/O operations and visualizations.
"""

__all__ = ['io', 'preprocessing', 'selection', 'store', 'visualization']
