"""HTTP layer: SCIM blueprint, health checks and JSON error handlers."""
