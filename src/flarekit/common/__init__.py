# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

from .logging import Logging, get_logger

__all__ = ("Logging", "get_logger")
