"""dbpulse - database metrics agent.

Periodically collects operational metrics from a database, normalizes them
into a provider-agnostic payload and uploads it to an ingestion endpoint.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
