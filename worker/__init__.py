"""
Background worker package.
"""
