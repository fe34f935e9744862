"""
Training log client: state container, live sync with the document
store, authentication and rendering.
"""
