"""Persistence: everything lives in a blob store.

Modules:
    blob_store    - key -> bytes store (local filesystem or S3)
    config_store  - per-kind JSON configs with private/shared key prefixes
    file_service  - user uploads namespaced by owner email
"""
