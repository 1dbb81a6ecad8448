"""
User management and authentication feature module.
"""
