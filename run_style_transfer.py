"""
run_style_transfer.py - CLI Entry Point

Forwards execution to the command-line interface defined in
`src/neural_style_transfer/cli.py`, so the tool can run from a checkout
without installing the package or editing PYTHONPATH.

Usage:
    python run_style_transfer.py --content content.jpg --style style.jpg [options]

For help on available options, run:
    python run_style_transfer.py --help
"""

import sys

# Source code in src/ subdirectory
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

import neural_style_transfer.cli as nst_cli  # noqa: E402

if __name__ == "__main__":
    nst_cli.main()
