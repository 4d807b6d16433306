# tests/conftest.py
from __future__ import annotations

import os

# api.py builds its settings at import time; give it a webhook before any test imports it.
os.environ.setdefault("UPLOAD_RELAY_WEBHOOK_URL", "http://webhook.test/webhook/file-upload")
os.environ.setdefault("UPLOAD_RELAY_LOG_FORMAT", "console")
