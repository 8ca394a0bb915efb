# Routes package init
"""
NoteFlow Backend - API Routes Package
=======================================

Route Inventory:
    - notes.py:   POST   /api/notes                 (upload file + metadata)
                  GET    /api/notes                 (newest first, cursor pages)
                  GET    /api/notes/{id}            (note detail)
                  GET    /api/notes/{id}/download   (redirect to durable URL)
                  DELETE /api/notes/{id}            (remove object and row)
    - health.py:  GET    /health

Routes stay thin: parse the request, call the service, shape the response.
Errors propagate to the handlers registered in main.py.
"""
