"""Shared base utilities for data models."""
import secrets


def generate_id(prefix: str) -> str:
    """Generate a unique ID with a prefix, e.g. ``notif_1a2b3c4d5e6f``."""
    return f"{prefix}_{secrets.token_hex(6)}"
