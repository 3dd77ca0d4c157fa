"""
Read DMFR registry documents and merge them into a canonical feed / operator
index.
"""
