"""Post-quantum AKE auto-selector.

Architectural role:
    Orchestrates an authenticated key exchange across independently deployed KEM,
    signature, and key-rotation services without performing cryptography itself.

Package split:
    - `backends`: configuration, HTTP transport, downstream response contracts.
    - `core`: scheme policy, health aggregation, signing strategies, AKE engine.
    - `api`: FastAPI adapter and command-line entrypoint.
"""

__version__ = "0.1.0"
