"""
CRUD operations for OAuthClient model.

Request handlers only read clients. Writes happen through provisioning
(scripts/provision_clients.py or OAUTH_CLIENTS_FILE at startup).
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from sqlmodel import Session, select

from broker.core.security import hash_client_secret
from broker.models import OAuthClient

logger = logging.getLogger(__name__)


def get_client(*, session: Session, client_id: str) -> OAuthClient | None:
    """
    Get a client by id.

    Args:
        session: Database session
        client_id: Public client identifier

    Returns:
        OAuthClient if found, None otherwise
    """
    if not client_id:
        return None
    return session.get(OAuthClient, client_id)


def list_clients(*, session: Session) -> list[OAuthClient]:
    statement = select(OAuthClient).order_by(OAuthClient.id)
    return list(session.exec(statement).all())


def provision_client(
    *,
    session: Session,
    client_id: str,
    name: str,
    redirect_uris: list[str],
    allowed_scopes: list[str],
    secret: str | None = None,
) -> OAuthClient:
    """
    Create or replace a client record.

    Args:
        session: Database session
        client_id: Public client identifier
        name: Display name
        redirect_uris: Exact redirect URIs the client may use
        allowed_scopes: Scopes the client may request
        secret: Plain client secret; None registers a public (PKCE-only) client

    Returns:
        The provisioned OAuthClient
    """
    if not redirect_uris:
        raise ValueError(f"Client {client_id} needs at least one redirect URI")

    client = session.get(OAuthClient, client_id)
    if client is None:
        client = OAuthClient(id=client_id, name=name)

    client.name = name
    client.redirect_uris = list(redirect_uris)
    client.allowed_scopes = list(allowed_scopes)
    client.secret_hash = hash_client_secret(secret) if secret else None

    session.add(client)
    session.commit()
    session.refresh(client)
    logger.info(
        "Provisioned %s client %s with %d redirect URI(s)",
        "public" if client.is_public else "confidential",
        client.id,
        len(client.redirect_uris),
    )
    return client


def load_client_definitions(path: str | Path) -> list[dict[str, Any]]:
    """
    Read client definitions from a YAML file.

    Expected format:

        clients:
          - id: dashboard
            name: Dashboard
            secret: change-me        # omit for public clients
            redirect_uris: [https://dashboard.example.org/callback]
            allowed_scopes: [read, write]
    """
    with open(path) as f:
        document = yaml.safe_load(f) or {}

    clients = document.get("clients", [])
    if not isinstance(clients, list):
        raise ValueError(f"{path}: 'clients' must be a list")

    for definition in clients:
        missing = {"id", "redirect_uris"} - set(definition)
        if missing:
            raise ValueError(f"{path}: client definition missing {sorted(missing)}")

    return clients


def provision_clients_from_file(*, session: Session, path: str | Path) -> list[OAuthClient]:
    """Provision every client defined in a YAML file."""
    return [
        provision_client(
            session=session,
            client_id=definition["id"],
            name=definition.get("name", definition["id"]),
            redirect_uris=definition["redirect_uris"],
            allowed_scopes=definition.get("allowed_scopes", []),
            secret=definition.get("secret"),
        )
        for definition in load_client_definitions(path)
    ]
