#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Type hints used internally by this package"""

from typing import Dict, List, Union, Any, MutableMapping

Jsonable = Union[None, str, int, float, bool, List[Any], Dict[str, Any]]

Record = MutableMapping[str, Any]
"""A stored record: a mapping from field name to value"""
