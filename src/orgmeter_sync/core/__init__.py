"""
Runtime configuration and the command line interface.
"""
