"""
Shared infrastructure: base models, exceptions, logging, caching and middleware.
"""
