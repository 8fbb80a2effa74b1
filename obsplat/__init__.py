"""In-memory metrics, a query language, alert rules and a Flask HTTP API for observability."""

__version__ = "0.1.0"