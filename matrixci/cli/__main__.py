"""Entry point for the matrixci CLI when run as python -m matrixci.cli."""

if __name__ == "__main__":
    from matrixci.cli.main import main

    main()
