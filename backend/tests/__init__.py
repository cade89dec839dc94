# Point logs and uploads at throw-away directories before the settings
# singleton is imported by any test module.
from __future__ import annotations

import os
import tempfile

_TMP_ROOT = tempfile.mkdtemp(prefix="send2ereader-tests-")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP_ROOT, "logs"))
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TMP_ROOT, "uploads"))
os.environ.setdefault("STATIC_DIR", os.path.join(_TMP_ROOT, "static"))
