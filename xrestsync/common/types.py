# *********************************************************************************************
# It's VERY important that only basic types go in here, no real logic should be in this module.
#
# This file is meant to contain the very basic types that are used throughout the entire module.

from typing import Dict, Any, Sequence, Union, List

JsonDict = Dict[str, Any]
"""
`Dict[str, Any]`: This represents a JSON type of dict, with string keys and any value.
"""

JsonValue = Union[JsonDict, List[Any], str, int, float, bool, None]
""" Any value that can come out of `json.loads`. """

KeyPaths = Sequence[str]
""" `Sequence[str]`: Represents a list of dotted field paths, ie: `["metadata.revision"]`. """
