"""Infrastructure layer: HTTP integrations, source providers, persistence, observability."""
