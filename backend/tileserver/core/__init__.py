"""Configuration, logging, errors and the tileset schema."""
