"""mintwatch: watch an ERC-721 contract for mints and forward them to a sink."""
__version__ = "0.1.0"
