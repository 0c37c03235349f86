from __future__ import annotations

import os

from reactpy.backend.flask import Options, configure

from .api import app
from .components import App
from .db import maybe_init_db_on_startup

maybe_init_db_on_startup()

configure(
    app,
    App,
    Options(
        head=(
            {"tagName": "title", "children": ["Obra Hub"]},
            {
                "tagName": "meta",
                "attributes": {"name": "viewport", "content": "width=device-width, initial-scale=1"},
            },
        )
    ),
)


if __name__ == "__main__":
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5001")),
        debug=os.environ.get("FLASK_DEBUG", "0") == "1",
    )
