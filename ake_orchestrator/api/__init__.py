"""AKE orchestrator API adapter package.

Architectural role:
- Defines the external interaction boundary for HTTP and CLI interfaces.
- Performs transport-level parsing and response shaping.
- Delegates orchestration to the core layer.
"""
