"""
Milestone Progress Engine
Blueprint registry.
"""
