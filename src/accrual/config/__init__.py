"""Configuration schema and loaders."""
