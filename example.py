"""Minimal controller served through the ASGI adapter.

Install the ``serve`` extra, then run ``python example.py`` to boot Granian on
``PYTHIA_HOST``/``PYTHIA_PORT`` (default ``127.0.0.1:8000``). Try
``curl 'localhost:8000/notes?done=true'`` or post a JSON note to ``/notes``.
"""

from __future__ import annotations

import os
from typing import Annotated, Any

from granian import Granian
from granian.constants import Interfaces

from pythia import (
    ASGIAdapter,
    NotFound,
    body,
    controller,
    create_handler,
    get,
    http_code,
    param,
    parse_boolean,
    parse_number,
    post,
    query,
)

_NOTES: dict[int, dict[str, Any]] = {1: {"id": 1, "text": "try pythia", "done": False}}


@controller("/notes")
class NotesController:
    @get()
    def list_notes(self, done: Annotated[Any, query("done", parse_boolean)]):
        notes = list(_NOTES.values())
        if isinstance(done, bool):
            notes = [note for note in notes if note["done"] is done]
        return notes

    @get("/:id")
    def read_note(self, note_id: Annotated[int, param("id", parse_number())]):
        note = _NOTES.get(note_id)
        if note is None:
            raise NotFound(f"Note {note_id} does not exist")
        return note

    @post()
    @http_code(201)
    def create_note(self, text: Annotated[Any, body("text")]):
        note = {"id": max(_NOTES, default=0) + 1, "text": text, "done": False}
        _NOTES[note["id"]] = note
        return note


app = ASGIAdapter(create_handler(NotesController))


def main() -> None:
    """Boot the Granian development server."""

    host = os.getenv("PYTHIA_HOST", "127.0.0.1")
    port = int(os.getenv("PYTHIA_PORT", "8000"))
    print("Serving pythia example on Granian at http://%s:%d" % (host, port))
    Granian("example:app", address=host, port=port, interface=Interfaces.ASGI).serve()


if __name__ == "__main__":
    main()
