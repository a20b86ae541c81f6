"""
Command parsing and routing.
"""
