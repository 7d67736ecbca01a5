"""HTTP routers, one module per resource, mounted under `/api`."""
