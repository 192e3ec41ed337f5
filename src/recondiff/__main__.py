"""
Run the finite-difference self-test.

    $ python -m recondiff [-v]
"""

import argparse
import logging
import sys

import recondiff.operator as rcdo


def _init_logger(verbose: bool) -> logging.Logger:
    logger = logging.getLogger("recondiff")
    logger.handlers.clear()
    level = "DEBUG" if verbose else "INFO"
    logger.setLevel(level)

    fmt = logging.Formatter(fmt="{levelname} -- {message}", style="{")
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    return logger


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="recondiff",
        description="recondiff self-test: adjoint consistency of N-D finite differences.",
    )
    parser.add_argument("-v", "--verbose", help="Log operator construction.", action="store_true")
    args = parser.parse_args(argv)

    _init_logger(args.verbose)
    success = rcdo.self_test()
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
