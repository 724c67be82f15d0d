"""Framework integrations. Each module imports its framework lazily on use."""
