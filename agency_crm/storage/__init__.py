"""Credential store backends."""

from agency_crm.storage.base import CredentialStore, hash_token
from agency_crm.storage.memory import MemoryCredentialStore
from agency_crm.storage.postgres import PostgresCredentialStore

__all__ = [
    "CredentialStore",
    "MemoryCredentialStore",
    "PostgresCredentialStore",
    "hash_token",
]
