"""Library Circulation - core package

This package contains:
- Borrow/return transactions and history (borrowing.py)
- Catalog, categories and dashboard statistics (catalog.py)
- Transactional document stores (database.py, memory_store.py)
- Library facade used by the outer surfaces (library.py)
- HTTP API (api.py) and admin CLI (main.py)
"""

__version__ = "1.0.0"
