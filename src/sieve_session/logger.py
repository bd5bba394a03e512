# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logger lookup for the ManageSieve session layer.

Handlers, levels and formats are left to the entry point (see
:mod:`sieve_session.cli`); this module only hands out named loggers.
Sessions created without an injected logger log under a per-session child,
e.g. ``SieveSession.work``, so one account can be filtered out of a busy
process::

    logging.getLogger("SieveSession.work").setLevel(logging.DEBUG)
"""

import logging


def get_logger(name: str = "SieveSession", sid: str | None = None) -> logging.Logger:
    """Return the logger called ``name``, or its ``sid`` child when given."""
    logger = logging.getLogger(name)
    if sid:
        return logger.getChild(sid)
    return logger
