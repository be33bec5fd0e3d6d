"""
Services package for the super-app assistant backend.

- data_gateway: never-raising wrapper over the Supabase client
- ai: dialogue engine (classifier, fetch scheduler, tools, orchestrator, emitter)
"""

# IMPORTANT: Do not eager-import subpackages or modules here.
# Import services explicitly where needed.

__all__: list[str] = []
