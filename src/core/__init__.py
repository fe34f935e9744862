"""
Core logic for the training log.

Framework-agnostic: nothing here imports FastAPI or a Google SDK. The
document store and local storage are reached through protocols, so the
sync services run against in-memory stand-ins in tests.
"""
