"""HTTP routers of the Election API."""
