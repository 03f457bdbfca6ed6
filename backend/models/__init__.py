"""
Models package.

domain/ holds the storage-agnostic dataclasses used across the weave.
"""
