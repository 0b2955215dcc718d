"""CLI entry point for SkillTrack."""

import os

from skilltrack.app import create_app


def main():
    app = create_app()
    debug = os.environ.get("FLASK_DEBUG", "false").lower() in ("1", "true", "yes")
    port = int(os.environ.get("PORT", "5000"))
    app.run(debug=debug, port=port)


if __name__ == "__main__":
    main()
