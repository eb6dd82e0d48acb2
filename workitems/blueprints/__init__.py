"""
Work-Item Lineage Service
Blueprint registry.
"""
