"""Pipeline configuration: defaults, YAML loader and validation."""
