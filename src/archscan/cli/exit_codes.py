"""Exit codes for the archscan CLI.

- 0: Run completed (partial download, scan or submission failures included)
- 2: Discovery failed, nothing was downloaded or submitted
- 3: Invalid usage (bad arguments, invalid configuration)
- 130: Interrupted; in-flight tools were terminated
"""

from __future__ import annotations

EXIT_SUCCESS = 0
EXIT_DISCOVERY_FAILURE = 2
EXIT_INVALID_USAGE = 3
EXIT_INTERRUPTED = 130
