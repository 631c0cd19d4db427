#!/usr/bin/env python3
"""Runs the Instagram harvester from a source checkout.

Same as the ``insta-harvester`` console script: ``python main.py --input input.json``.
"""

from __future__ import annotations

import importlib
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parent
SRC_PATH = ROOT / "src"
if SRC_PATH.exists():  # checkout without pip install
    sys.path.insert(0, str(SRC_PATH))


def main() -> None:
    cli = importlib.import_module("insta_harvester.cli")
    cli.main()


if __name__ == "__main__":
    main()
