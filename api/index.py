"""Serverless entry point: exposes ``app`` for the host (Vercel)."""

from __future__ import annotations

import logging
import os
import sys

# Add src/ to path so the host can import mealpick without installing it
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv

load_dotenv()  # for local development; the host injects env vars in production

from mealpick.app import create_app

logging.basicConfig(level=logging.INFO)

app = create_app()

if __name__ == "__main__":
    app.run(debug=True)
