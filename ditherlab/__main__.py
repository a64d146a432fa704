"""Entry point for running the dithering service as a module."""

from __future__ import annotations

from .app import create_app
from .config import SETTINGS


def main() -> None:
    """Run the Flask development server."""
    app = create_app()
    app.run(host="0.0.0.0", port=SETTINGS.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
