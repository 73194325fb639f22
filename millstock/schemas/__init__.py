"""
Mill Stock Pydantic Schemas
"""
