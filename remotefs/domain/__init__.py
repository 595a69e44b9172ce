"""
Domain layer - connection pooling, file sessions, transfers and sync
"""
