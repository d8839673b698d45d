"""
Maintenance scripts
"""
