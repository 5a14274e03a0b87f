"""Election platform HTTP API."""
