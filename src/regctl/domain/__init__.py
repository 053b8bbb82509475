"""Domain layer — resource models, timed transitions, and pure projections.

This layer depends only on stdlib and pydantic.
It must never import from services, infrastructure, commands, or config.
"""
