#!/usr/bin/env python
"""
Run Bitrate Reader from the project root without installing it.

    python run.py analyze movie.mp4
"""
import os
import sys

project_root = os.path.dirname(os.path.abspath(__file__))
src_path = os.path.join(project_root, 'src')

if src_path not in sys.path:
    sys.path.insert(0, src_path)

try:
    from bitrate_cli.main import cli
except ImportError as e:
    print(f"Error: {e}")
    print(f"Looking for bitrate_cli in: {src_path}")
    sys.exit(1)

if __name__ == "__main__":
    cli()
