"""Run a quick smoke test against the app.

Uses FastAPI's TestClient to hit `/health` and `/admission/stats`.
"""

import sys
import os

# Ensure backend folder is on sys.path so `registrar` package can be imported
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastapi.testclient import TestClient  # noqa: E402
from registrar.main import app  # noqa: E402


def run_testclient():
    client = TestClient(app)
    for path in ('/health', '/admission/stats'):
        resp = client.get(path)
        print(path, 'STATUS:', resp.status_code)
        print('JSON:', resp.json())


if __name__ == '__main__':
    run_testclient()
