"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Header names, status defaults, backend names
- exceptions: Custom exception hierarchy
- ingress: HTTP / queue boundary helpers for the Functions entrypoints
- owner_key: Non-reversible owner key derivation
"""
