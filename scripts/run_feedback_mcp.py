#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[mcp] feedback relay | "
    f"host={os.environ.get('FEEDBACK_HOST', '127.0.0.1')} | "
    f"port={os.environ.get('FEEDBACK_PORT', '9877')}",
    file=sys.stderr,
)

from mcp_servers.feedback.main import main  # noqa: E402

if __name__ == "__main__":
    main()
