"""
Archive server: read-only mirror of the archive over HTTP.
"""
