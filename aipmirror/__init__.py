"""Mirror the PANSA eAIP document catalogs onto the local filesystem."""

__version__ = "0.1.0"
