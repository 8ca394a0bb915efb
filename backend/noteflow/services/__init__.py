# Services package init
"""
NoteFlow Backend - Services Layer
===================================

What:  Business logic sitting between the entry points (HTTP routes, CLI) and
       the providers (compressors, object stores, database).
How:   Services accept plain values, apply the intake policy and return
       results. They are wired once at startup and handed to routes through
       FastAPI dependency injection.

Service Inventory:
    - classifier:        size/type policy (pure function)
    - scratch:           TransientIntakeStore, scratch artifact lifecycle
    - compression/:      Compressor strategies (Ghostscript, iLovePDF, none)
    - storage/:          ObjectStore strategies (Cloudinary, Supabase)
    - intake_service:    IntakeService, the upload orchestrator
    - note_store:        NoteRecordStore, the backfill job's view of notes
    - note_service:      NoteService, note CRUD on top of intake
    - backfill:          BackfillJob, migrates legacy local files
"""
