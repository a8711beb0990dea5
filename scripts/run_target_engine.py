#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[mcp] cdp_port={os.environ.get('MCP_ENGINE_CDP_PORT', '9222')} | "
    f"stop_shortcut={os.environ.get('MCP_ENGINE_STOP_SHORTCUT', 'Ctrl+Shift+Esc')} | "
    f"min_confidence={os.environ.get('MCP_ENGINE_MIN_CONFIDENCE', '0.3')}",
    file=sys.stderr,
)

from mcp_servers.target_engine.main import main  # noqa: E402

if __name__ == "__main__":
    main()
