"""
Matrix API Routes
"""
