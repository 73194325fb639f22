"""
Mill Stock Business Services
"""
