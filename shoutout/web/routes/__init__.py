"""Admin API route modules.

Each module exports a ``router`` (APIRouter) included by shoutout.web.app.
Shared dependencies live in shoutout.web.dependencies, request and response
models in shoutout.web.models.
"""
