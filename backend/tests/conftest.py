import os
import sys


# Tests import `backend.app.*`; put the repo root on sys.path so pytest
# works from the repo root or from inside `backend/`.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)
