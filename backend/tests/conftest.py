import os
import sys
import tempfile
from pathlib import Path

# Ensure tests can import the app package regardless of how pytest is invoked.
BACKEND = Path(__file__).resolve().parents[1]
BACKEND_STR = str(BACKEND)
if BACKEND_STR not in sys.path:
    sys.path.insert(0, BACKEND_STR)

# Keep scratch files out of the source tree.
os.environ.setdefault("DOWNLOAD_DIR", tempfile.mkdtemp(prefix="mp3-converter-tests-"))
