"""
Command-line interface to Haystack servers.
"""
