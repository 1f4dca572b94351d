"""store/ -- SQLAlchemy Core persistence for credentials, whitelists and sites.

Layer rule: store/ imports from core/ only.
"""
