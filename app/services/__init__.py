"""
Business logic services for the Video Lifecycle API
"""
