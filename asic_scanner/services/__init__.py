"""Scanner, registry, polling and control services."""
