"""Punto de entrada de la línea de comandos."""

from __future__ import annotations

from dosis_tool.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
