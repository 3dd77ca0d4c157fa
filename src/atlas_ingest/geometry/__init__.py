"""
Pure geometry helpers for feed bounds, convex hulls and path cleanup.
"""
