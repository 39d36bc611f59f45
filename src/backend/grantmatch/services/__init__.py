"""
Ingestion, extraction backends and matching services.

Modules are imported directly (e.g. `grantmatch.services.fetcher`) to keep
service wiring explicit in `grantmatch.container`.
"""
