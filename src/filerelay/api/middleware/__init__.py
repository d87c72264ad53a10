"""API middleware package.

Manifesto:
    Cross-cutting concerns (request ids, timing, error mapping)
    belong in middleware so routers stay focused on the transfer recipes.

Tags:
    api, middleware, cross-cutting
"""
