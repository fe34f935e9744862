"""
Firestore integration for the training log.

Implements the core DocumentStore protocol, with an in-memory version
for local development without a Firebase project.
"""
