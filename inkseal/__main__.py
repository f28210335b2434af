# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Allow running inkseal as a module:
    python -m inkseal keygen
    python -m inkseal publish draft.md posts/hello.md
"""

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
