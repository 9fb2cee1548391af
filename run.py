"""Local development entry point.

Usage:
    python run.py

Reads .env before the app is created, so config picks up local settings.
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from groupcollect import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)
