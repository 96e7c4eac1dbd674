"""Allow ``python -m bootcore``."""

from bootcore.cli import main

if __name__ == "__main__":
    main()
