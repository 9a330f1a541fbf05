"""Backend access package.

Module split:
    - `backend_config`: environment-driven candidate addresses and timeouts.
    - `client`: async HTTP transport, liveness probes, JSON calls.
    - `contracts`: per-backend request/response normalization.
"""
