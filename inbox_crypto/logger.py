"""
Structured logging for the encryption core.

Every module logs through ``get_logger(__name__)``. Key material, plaintext
and nonces are never passed to a logger; public keys only as fingerprints.
"""

import json
import logging
import sys
import time


ROOT_LOGGER = "inbox_crypto"


def get_logger(name: str = ROOT_LOGGER, level: int = logging.WARNING) -> logging.Logger:
    """
    Return a logger under the package hierarchy.

    The JSON-line stderr handler is attached once, to the package root
    logger; child loggers propagate to it.
    """
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        formatter = logging.Formatter(
            fmt=json.dumps({
                "ts": "%(asctime)s",
                "level": "%(levelname)s",
                "name": "%(name)s",
                "msg": "%(message)s"
            }),
            datefmt="%Y-%m-%dT%H:%M:%SZ",
        )
        formatter.converter = time.gmtime  # UTC timestamps
        handler.setFormatter(formatter)
        root.addHandler(handler)
        root.setLevel(level)

    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
