"""
Infrastructure layer - external service integrations.

- firestore: document store for the training log
- sheets: Google Sheets API client for the proxy endpoints
- local_storage: on-device key/value storage

Each package pairs the real client with an in-memory mock.
"""
