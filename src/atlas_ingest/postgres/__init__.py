"""
PostGIS table definitions and the persistence gateway used by feed jobs.
"""
