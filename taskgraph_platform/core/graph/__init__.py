"""Task dependency graph: storage, algorithms and structural mutations.

An edge A -> B means "A blocks B". ``store`` owns the nodes and edges,
``cycle``/``sort``/``traversal`` are read-only algorithms over a store, and
``operations`` holds the mutations that keep edges and blocker lists in step.
"""
