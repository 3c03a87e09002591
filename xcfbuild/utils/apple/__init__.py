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

"""Apple distribution utilities: bundle templates and Swift packages."""

from .spm import SPMPackager
from .templates import FrameworkInfo, TemplateRenderer

__all__ = ["FrameworkInfo", "SPMPackager", "TemplateRenderer"]
