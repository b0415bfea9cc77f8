"""
Entry point for: python3 -m src.signage

Runs the signage device client service.
"""

import argparse

from .service import main


def _parse_args():
    parser = argparse.ArgumentParser(description="Signage device client")
    parser.add_argument('--config', help="Path to YAML config file")
    return parser.parse_args()


if __name__ == "__main__":
    main(_parse_args().config)
