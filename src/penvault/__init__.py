"""
penvault - a local-first note vault.

Notes and their attached images and files live in a local SQLite store.
The whole vault, or a single note, can be exported as a portable JSON
bundle, optionally sealed in a password-encrypted ``.pen.json`` envelope,
and merged back into any other vault without losing data.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("penvault")
except PackageNotFoundError:
    __version__ = "0.3.0"
