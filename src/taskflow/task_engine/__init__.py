"""Task document engine.

This package provides the document model, the file-backed store, the
dependency graph, and the gated engine that every task operation runs through.
"""
