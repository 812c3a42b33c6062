"""Allow ``python -m zhort``."""

from zhort.cli import main

raise SystemExit(main())
