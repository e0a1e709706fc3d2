#!/usr/bin/env python3
"""
Provision OAuth clients from a YAML file into the broker database.

Usage:
    python scripts/provision_clients.py [clients-file]

Environment variables:
    DATABASE_URL / POSTGRES_*  - Database to write to (same as the server)
    OAUTH_CLIENTS_FILE         - Default clients file when no argument is given

File format:
    clients:
      - id: dashboard
        name: Dashboard
        secret: change-me          # omit for public (PKCE-only) clients
        redirect_uris:
          - http://localhost:3000/callback
        allowed_scopes: [openid, profile, email]

Secrets are stored as bcrypt hashes; re-running the script replaces the
existing record for each client id.
"""

import os
import sys
from pathlib import Path

import yaml

from broker.core.db import get_session, init_db
from broker.crud.client import list_clients, provision_clients_from_file

PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_CONFIG = PROJECT_ROOT / "config" / "clients.yaml"


def log_info(msg: str) -> None:
    print(f"\033[0;32m[INFO]\033[0m {msg}")


def log_warn(msg: str) -> None:
    print(f"\033[1;33m[WARN]\033[0m {msg}")


def log_error(msg: str) -> None:
    print(f"\033[0;31m[ERROR]\033[0m {msg}")


def main() -> None:
    print("=" * 40)
    print("OAuth Client Provisioning")
    print("=" * 40)
    print()

    if len(sys.argv) > 1:
        clients_file = Path(sys.argv[1])
    else:
        clients_file = Path(os.environ.get("OAUTH_CLIENTS_FILE", DEFAULT_CONFIG))

    if not clients_file.exists():
        log_error(f"Clients file not found: {clients_file}")
        sys.exit(1)

    init_db()

    try:
        with get_session() as session:
            provisioned = provision_clients_from_file(session=session, path=clients_file)
            for client in provisioned:
                kind = "public" if client.is_public else "confidential"
                log_info(f"{client.id} ({kind}): {', '.join(client.redirect_uris)}")
            if not provisioned:
                log_warn(f"No clients defined in {clients_file}")

            print()
            print("=" * 40)
            print(f"Provisioning complete! {len(provisioned)} client(s) from {clients_file}")
            print(f"Registered clients: {', '.join(c.id for c in list_clients(session=session))}")
            print("=" * 40)
    except (OSError, ValueError, yaml.YAMLError) as e:
        log_error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
