"""Infrastructure adapters: configuration, observability, providers and fallback."""
