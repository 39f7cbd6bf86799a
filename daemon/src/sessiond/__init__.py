"""sessiond - Issue portable session identifiers for paired chat accounts."""

__version__ = "0.1.0"
