"""
Local development entry point.

Creates the Flask app via create_app() and runs the dev server with the
development config unless APP_CONFIG says otherwise.
"""

import os

os.environ.setdefault("APP_CONFIG", "community.config.DevConfig")

from community import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    # For local dev only; use a proper WSGI server in production.
    app.run(debug=True)
