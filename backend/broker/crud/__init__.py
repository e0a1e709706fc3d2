"""
CRUD operations module.
"""

from broker.crud.client import (
    get_client,
    list_clients,
    load_client_definitions,
    provision_client,
    provision_clients_from_file,
)
from broker.crud.identity import (
    get_identity,
    get_or_create_identity,
)
from broker.crud.store import (
    consume_entry,
    delete_entry,
    get_entry,
    purge_expired_entries,
    put_entry,
    secret_key,
    update_entry,
)

__all__ = [
    # Client
    "get_client",
    "list_clients",
    "load_client_definitions",
    "provision_client",
    "provision_clients_from_file",
    # Identity
    "get_identity",
    "get_or_create_identity",
    # Store
    "consume_entry",
    "delete_entry",
    "get_entry",
    "purge_expired_entries",
    "put_entry",
    "secret_key",
    "update_entry",
]
