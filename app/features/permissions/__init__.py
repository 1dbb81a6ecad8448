"""
Permission management feature module.

Roles, permissions and their assignments to users: synchronization of
assignment lists, effective permission resolution and the super-admin bypass.
"""
