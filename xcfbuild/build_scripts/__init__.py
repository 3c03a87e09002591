#
# Copyright 2024 zhlinh and xcfbuild Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

"""Build steps, from the native build of a target to the xcframeworks."""

__all__ = [
    "build_framework",
    "build_target",
    "introspect",
    "merge_headers",
    "merge_libs",
    "pipeline",
]
