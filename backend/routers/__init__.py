"""
API routers for the MindScan backend.
"""
