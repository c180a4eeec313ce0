"""
CLI module for orbcast
"""
