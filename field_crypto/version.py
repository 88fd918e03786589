#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Automatically-generated version string for this package"""

__version__ = "1.0.0"
