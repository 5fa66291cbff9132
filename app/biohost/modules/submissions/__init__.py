"""
Stored form submissions from email, phone and contact collector blocks.
"""
