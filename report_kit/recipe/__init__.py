"""
Recipe catalogue and validation.

Modules:
  catalog   — DatasetKind entries: provider and minimum plan per kind.
  validator — RecipeValidator: structure, policy and plan checks (no I/O).
"""
