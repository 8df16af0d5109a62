"""Infrastructure adapters: storage, metrics, logging and tracing."""
