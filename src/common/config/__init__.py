"""Configuration helpers shared across packages."""
