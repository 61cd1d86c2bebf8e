"""Action sets of the six specialists.

Each module exposes ``build_actions(ctx) -> List[ActionSpec]`` (referenced as
``factory_path`` in ``config/workers.yaml``) and ``INSTRUCTIONS``.
"""
