"""
Device-local key/value storage (remembered login, drafts, cached memos).
"""
