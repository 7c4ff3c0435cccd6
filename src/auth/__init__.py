"""User profiles and acting-user resolution.

Note: Dependencies are not exported here to avoid circular imports.
Import directly from src.auth.dependencies when needed.
"""
