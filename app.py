"""
=============================================================================
EXPRESSION CALIBRATION SERVICE - APPLICATION ENTRY POINT (app.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
When you run "python app.py", this starts a small web server that lets a game
or UI client:

  1. Start expression detection (webcam through MediaPipe, or "manual" mode
     where the client posts blendshape frames itself).
  2. Calibrate the user's Neutral, Smile and Sad faces.
  3. Ask "which expression is the user showing right now, and how sure are we?"
  4. Run the guided calibration test and emotion-rule gates.

The URL handlers live in routes.py; the detection loop lives in detector.py.

HOW TO RUN:
-----------
  - From project root:  python app.py
  - By default the app is at:  http://localhost:5000

CONFIGURATION:
--------------
  - Settings come from the .env file and config.py.
=============================================================================
"""

import logging
from pathlib import Path
from dotenv import load_dotenv

# Load .env before config.py reads the environment
load_dotenv(Path(__file__).resolve().parent / ".env")

from flask import Flask
from flask_cors import CORS
from flask_compress import Compress

from routes import register_routes
import config

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

config.warn_missing_config()


def create_app() -> Flask:
    """
    Create and configure the Flask application.

    What it does:
      - Enables CORS so a game client or browser on another origin can call the API.
      - Enables response compression.
      - Registers all URL routes from routes.py.

    Returns:
        The configured Flask application.
    """
    app = Flask(__name__)
    CORS(app, resources={r"/*": {"origins": "*"}})
    Compress(app)
    register_routes(app)
    return app


app = create_app()


if __name__ == "__main__":
    # FLASK_DEBUG: Flask's dev server with reloader; otherwise Waitress.
    if config.FLASK_DEBUG:
        app.run(host=config.FLASK_HOST, port=config.FLASK_PORT, debug=True)
    else:
        import waitress
        waitress.serve(app, host=config.FLASK_HOST, port=config.FLASK_PORT, threads=6)
