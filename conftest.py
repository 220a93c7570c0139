"""
Root pytest configuration for Ask Eve Assist Safety Core.

Sets up Python path and test environment variables for all test directories.
"""

import os
import sys
from pathlib import Path

# Set test environment variables before anything else imports settings
os.environ.setdefault("SAFETY_ENVIRONMENT", "testing")
os.environ.setdefault("SAFETY_LOG_LEVEL", "DEBUG")
os.environ.setdefault("SAFETY_LOG_FORMAT", "console")

# Alert channels stay unconfigured unless a test configures them explicitly
for name in ("TEAMS_WEBHOOK_URL", "EMAIL_CRISIS_RECIPIENTS"):
    os.environ.pop(name, None)

# Project root
project_root = Path(__file__).parent

# Add src directory to path for imports (askeve_safety)
src_path = project_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))
