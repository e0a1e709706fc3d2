"""Federated OAuth2 authorization broker."""
