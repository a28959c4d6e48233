"""arkv — entry point.

Lets the CLI run straight from a source checkout: ``python main.py PATH``.
"""

from __future__ import annotations

from arkv.cli import main

if __name__ == "__main__":
    main()
