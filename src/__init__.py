"""
Training log: a Google Sheets proxy service and a Firestore-backed
training log client.

- core: framework-agnostic training log logic
- infrastructure: Firestore, Google Sheets and local storage adapters
- api: FastAPI routes and dependencies for the Sheets proxy
- config: application configuration
"""

__version__ = "0.1.0"
