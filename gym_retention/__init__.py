"""
Gym Retention API.
"""
