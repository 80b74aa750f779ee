"""Settings loader (args/app_config.yaml + environment)."""
