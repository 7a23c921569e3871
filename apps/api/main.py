"""uvicorn entrypoint for the HTML Arena API.

Run from this directory with: uvicorn main:app --reload

The app is built here rather than in ``arena.app`` so importing the package
has no side effects beyond logging setup; tests build their own apps.
"""

from arena.app import add_request_id_middleware, create_app

app = create_app()
add_request_id_middleware(app)

__all__ = ["app"]
