"""docflow engine layer — errors, configuration, logging and operation context."""
