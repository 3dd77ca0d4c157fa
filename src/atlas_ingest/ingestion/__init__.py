"""
Pipeline for ingesting GTFS static schedule feeds listed in the registry. Each
feed is parsed, has its geometry and styling derived, and is written to the
database as an independent job.
"""
