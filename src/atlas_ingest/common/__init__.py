"""
GTFS types shared by the ingestion and styling code.
"""
