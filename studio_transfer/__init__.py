"""
Studio Transfer
===============

Cross-project migration engine for Appwrite-compatible backends.
Moves databases, storage, functions, users and teams from a source project
to a destination project in dependency order, resumably.
"""

__version__ = "0.4.0"
