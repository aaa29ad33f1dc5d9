"""Tile server package for PostGIS-backed Mapbox Vector Tiles.

This package compiles a declarative tileset schema into a single PostGIS
statement per zoom level and serves the resulting vector tiles over HTTP.

- Tileset documents are validated at load time into immutable models
- One statement per (tileset, zoom) renders every layer of a tile in a
  single database round trip
- Tiles are rendered through a bounded, thread-safe connection pool with a
  server-side statement timeout
- A replication header log records which upstream state the data reflects

See the module docstrings for details on architecture and usage.
"""
