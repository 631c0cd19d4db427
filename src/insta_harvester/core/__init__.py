"""Configuration, error types and data structures shared across the harvester."""
