# Middleware package init
"""
NoteFlow Backend - Middleware Package
=======================================

What:  Cross-cutting concerns applied to every HTTP request.

Middleware Chain:
    Request → [Request ID] → [Access Log] → [CORS] → Route Handler

    Starlette runs middleware in reverse order of registration, so
    create_app() adds them last-to-first.
"""
