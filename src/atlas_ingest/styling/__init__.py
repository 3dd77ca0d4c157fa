"""
Override table and display style resolution for transit paths.
"""
