"""Envvault hub: stores encrypted env files keyed by GitHub repository."""
