"""Allow ``python -m yuque_mirror``."""

from yuque_mirror.cli import main

if __name__ == "__main__":
    main()
