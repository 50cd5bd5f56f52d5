"""Storage layer for the penvault note vault."""

from penvault.storage.vault_store import VaultStore

__all__ = [
    "VaultStore",
]
