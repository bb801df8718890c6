"""Allow running the synchronizer with ``python -m aiokodisync``."""

from aiokodisync.cli import main

raise SystemExit(main())
