"""cetas-tiering test suite.

Test organization:
- unit/: one module per tiering.lib module, collaborators mocked or faked
- integration/: end-to-end create + sync flows against the in-memory warehouse
- helpers.py: FakeWarehouse, an in-memory catalog and statement executor
"""
