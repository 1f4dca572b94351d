"""materialize/ -- Derives credential and ACL files from the store, reloads the proxy.

Layer rule: materialize/ imports from core/ and store/. It never mutates the store.
"""
