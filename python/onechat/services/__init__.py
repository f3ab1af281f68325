"""Business logic services.

Services are called by route handlers and tasks. They own the database,
cache and provider orchestration; routes only translate HTTP.
"""
