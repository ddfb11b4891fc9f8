"""
ChecklistPro

Storefront API for downloadable business checklists.
"""

__version__ = "1.0.0"
