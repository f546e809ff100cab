# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""Resilient request pipeline and pagination for Cloudflare-style APIs."""

__version__ = "0.1.0"
