"""
Tests for workspace synchronization: hashing, tree building, diffing,
scheduling and the sync engine.
"""
