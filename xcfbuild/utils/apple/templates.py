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

"""
Bundle metadata rendered from the copier templates in files/Templates.

- framework: Info.plist and Modules/module.modulemap of a dynamic framework
- static-headers: module.modulemap of the headers of a static library
"""

import logging
import os
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from copier import run_copy

log = logging.getLogger(__name__)

FRAMEWORK_TEMPLATE = "framework"
STATIC_HEADERS_TEMPLATE = "static-headers"


@dataclass(frozen=True)
class FrameworkInfo:
    """Values of the Info.plist of a framework."""

    product_name: str
    bundle_identifier: str
    platform_name: str
    short_version: str
    build_version: str
    min_os_version: str
    min_os_key: str = "MinimumOSVersion"

    def as_data(self) -> Dict[str, str]:
        return asdict(self)


class TemplateRenderer:
    """Renders a template of the templates dir into a destination dir."""

    def __init__(self, templates_dir: str, logger: Optional[logging.Logger] = None):
        self.templates_dir = templates_dir
        self.log = logger or log

    def render(self, template_name: str, dest_dir: str, data: Dict[str, str]) -> str:
        src_path = os.path.join(self.templates_dir, template_name)
        self.log.debug("Rendering template %s in %s", template_name, dest_dir)
        run_copy(
            src_path,
            dest_dir,
            data=data,
            defaults=True,
            overwrite=True,
            quiet=True,
        )
        return dest_dir

    def render_framework_metadata(self, info: FrameworkInfo, dest_dir: str) -> str:
        """Writes Info.plist and Modules/module.modulemap in dest_dir."""
        return self.render(FRAMEWORK_TEMPLATE, dest_dir, info.as_data())

    def render_static_module_map(self, product_name: str, dest_dir: str) -> str:
        """Writes module.modulemap in dest_dir."""
        return self.render(STATIC_HEADERS_TEMPLATE, dest_dir, {"product_name": product_name})
