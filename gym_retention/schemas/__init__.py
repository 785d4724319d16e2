"""
Request and response schemas.
"""
