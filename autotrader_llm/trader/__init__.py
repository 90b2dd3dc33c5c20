"""Model-driven trade decisions"""
