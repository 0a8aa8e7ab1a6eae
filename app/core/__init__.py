"""
Core functionality for the Video Lifecycle API
"""
