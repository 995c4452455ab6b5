"""Deterministic sprint scheduler.

One pass walks the dependency graph in topological order and places every task
on its assignee's working calendar. The pass is pure: the same document and
settings always produce the same dates.
"""
