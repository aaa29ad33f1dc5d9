"""API router subpackage for the tile server.

Submodules:
    - tiles: XYZ vector tile and TileJSON endpoints.
    - replication: Endpoints exposing the replication header log.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.
"""
