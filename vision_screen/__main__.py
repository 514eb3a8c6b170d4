"""Allow ``python -m vision_screen`` to launch the screening session."""
from __future__ import annotations

import sys

from .cli import main


if __name__ == "__main__":  # pragma: no cover - module level CLI hook
    sys.exit(main())
