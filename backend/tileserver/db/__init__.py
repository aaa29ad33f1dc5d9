"""Database access: connection pool, repositories and binary codecs.

Modules:
    - database: connection pool helpers and header repositories.
    - models: persisted record types.
    - geometry: EWKB geometry codec.
    - copy: PostgreSQL binary COPY writer.
"""
