#!/usr/bin/env python3
"""Allow ``python -m cmdrelay``."""

from __future__ import annotations

from cmdrelay.cli.main import main

if __name__ == "__main__":
    main()
