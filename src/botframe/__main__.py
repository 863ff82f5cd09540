"""botframe CLI bootstrap."""

from __future__ import annotations

from botframe.cli import app

if __name__ == "__main__":
    app()
