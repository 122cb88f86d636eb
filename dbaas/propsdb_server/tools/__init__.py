"""
Command-line tools for PropsDB.
"""
