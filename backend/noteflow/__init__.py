"""
NoteFlow Backend - Application Package
========================================

What: The `noteflow` package: a notes-sharing backend whose core is the
      file-intake pipeline (classify, compress, upload, clean up).
Who:  Imported by uvicorn (`noteflow.main:app`), Alembic, pytest and the
      `noteflow-backfill` administrative CLI.

Architecture Note:

    ┌─────────────────────────────────────┐
    │     Routes / CLI (entry points)     │  ← HTTP and admin surfaces
    ├─────────────────────────────────────┤
    │   Intake pipeline (services/)       │  ← classify → compress → upload
    ├─────────────────────────────────────┤
    │   Provider adapters                 │  ← compressors, object stores
    ├─────────────────────────────────────┤
    │   Note Record Store (database)      │  ← async SQLAlchemy
    └─────────────────────────────────────┘

    The intake pipeline never writes note records itself. Routes and the
    backfill job persist the durable reference it hands back.
"""

__version__ = "1.0.0"
