"""HTTP interface: routes, dependencies and middleware."""
