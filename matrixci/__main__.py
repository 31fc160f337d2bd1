"""Entry point for ``python -m matrixci``."""

from matrixci.cli.main import main

if __name__ == "__main__":
    main()
