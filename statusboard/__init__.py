# Status board: shared status document, optimistic client sync, server-side mutations
#
# Components:
#   schema.py         - Data model (Task, Project, Idea, ChangeRequest, Document, Placement)
#   codec.py          - JSON / UTF-8 / base64 transport encoding
#   errors.py         - Typed failures carrying an HTTP status
#   config.py         - YAML + environment configuration
#   document_store.py - Revisioned document stores (GitHub contents API, file, memory)
#   mutator.py        - Server-side read/modify/write with conflict retry
#   notify.py         - Webhook wake-ups for new ideas and change requests
#   today.py          - Daily task plan
#   overrides.py      - SQLite-backed local override store
#   reconciler.py     - Snapshot + overrides → rendered board
#   client.py         - HTTP client for the board API
#   fetcher.py        - Periodic snapshot polling
#   dispatcher.py     - Optimistic mutations with background sync and retry
#   session.py        - Client facade wiring the above together
