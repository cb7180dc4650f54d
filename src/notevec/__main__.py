"""Console-script entry point for :mod:`notevec`."""

from __future__ import annotations

from notevec.cli import create_app


def main() -> None:
    """Run the ``notevec`` command line application."""

    app = create_app()
    app(prog_name="notevec")


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    main()


__all__ = ["main"]
