"""
gsi-mbtiles test suite

Structure:
- unit/: Unit tests for individual components and the sync orchestrator
- conftest.py: shared fixtures (temporary archive, in-memory reporter)
- fakes.py: in-memory tile host used in place of the network
"""
