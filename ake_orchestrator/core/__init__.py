"""Core orchestration package.

Composition:
    - `policy`: signature-scheme selection.
    - `health`: concurrent reachability aggregation.
    - `strategies`: ordered signing strategy chain.
    - `engine`: end-to-end AKE orchestration.
    - `ake_types`, `errors`: shared data contracts and failures.
"""
