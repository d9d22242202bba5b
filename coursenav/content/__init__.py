"""
Content Module - Tree assembly and pure derivations over a course tree.

- normalizer: raw payloads -> Course tree
- loader: two-phase fan-out fetch feeding the normalizer
- sequencer: flattened order and next/previous lookups
- progress: completion counting and optimistic updates
"""
