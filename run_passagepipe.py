#!/usr/bin/env python3
"""
passagepipe - resumable batch inference over document collections

Convenience wrapper for running from a source checkout without installing.

Usage:
    python run_passagepipe.py --input data/to_translate --output output/translated
    python run_passagepipe.py --task decorate --input data/docs --limit 10
"""

import os
import sys

# Add src to path for package imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from passagepipe.run_passagepipe import main  # noqa: E402

if __name__ == "__main__":
    main()
