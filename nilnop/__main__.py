"""Allow ``python -m nilnop``."""

from nilnop.main import main

if __name__ == "__main__":
    raise SystemExit(main())
