"""
Ingest GTFS schedule feeds listed in a federated DMFR registry into a PostGIS
database for map and query use.
"""
