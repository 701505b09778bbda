"""keycypher: discover, catalog and encrypt local secrets."""

__version__ = "0.1.0"
