"""
kmoni test suite

Structure:
- unit/: Unit tests for individual components
- integration/: FastAPI routes over a real store + scheduler
- helpers.py: image/snapshot builders shared by both
"""
