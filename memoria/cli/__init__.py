"""Command-line tools for local use.

- ``python -m memoria.cli ingest-file --path notes.pdf`` -- ingest an upload
- ``python -m memoria.cli ingest-url --url https://...`` -- ingest a page
- ``python -m memoria.cli ingest-text --text "..."``      -- ingest a note
- ``python -m memoria.cli search "query"``                -- hybrid search
- ``python -m memoria.cli ask "question"``                -- streamed answer
- ``python -m memoria.cli status DOCUMENT_ID``            -- processing status

Ingest commands wait for the pipeline to drain before exiting, since the
job queue lives inside the process.
"""
