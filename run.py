"""Local development entry point.

Usage:
    python run.py
    python3 run.py

The script detects if it's running outside the project virtualenv
and re-launches itself with the correct Python automatically.

Set SWEEPER_AUTOSTART=true to run the lifecycle sweeper in-process.
"""

import os
import sys
import subprocess

# ── Auto-activate virtualenv ──
_project_dir = os.path.dirname(os.path.abspath(__file__))
_venv_python = os.path.join(_project_dir, "venv", "bin", "python")

if os.path.exists(_venv_python) and os.path.realpath(sys.executable) != os.path.realpath(_venv_python):
    print(f"[run.py] Switching to venv Python...")
    try:
        sys.exit(subprocess.call([_venv_python] + sys.argv))
    except KeyboardInterrupt:
        sys.exit(0)

# ── Normal startup ──
from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from seatdesk import create_app

app = create_app()

if __name__ == "__main__":
    sweeper = None
    # Only the reloader's child process serves requests; start the sweeper there.
    if app.config["SWEEPER_AUTOSTART"] and os.environ.get("WERKZEUG_RUN_MAIN") == "true":
        from seatdesk.services.sweeper import LifecycleSweeper

        sweeper = LifecycleSweeper(app)
        sweeper.start()
    try:
        app.run(debug=True, host="0.0.0.0", port=5001)
    finally:
        if sweeper is not None:
            sweeper.stop()
