"""
filerelay - file transfer service for monday.com integration recipes.

Copies or moves files between file columns, items, linked boards, and
update attachments.  Requests are acknowledged immediately and the files
are drained in the background by a rate-limited, circuit-protected
pipeline per recipe.

Packages:
    - filerelay.core: errors, settings, structured logging
    - filerelay.execution: retry, circuit breaker, rate limiting
    - filerelay.observability: in-process metrics
    - filerelay.platform: monday.com GraphQL client, OAuth, tokens, sessions
    - filerelay.transfer: scenarios, registry, pipeline, transfer operation
    - filerelay.api: FastAPI application
    - filerelay.cli: Typer command line
"""

__version__ = "0.1.0"
