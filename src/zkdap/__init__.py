"""ZK data access: prove a private permission level meets a public threshold."""

__version__ = "0.1.0"
