# iampilot: least-privilege IAM policy generation
# Copyright (C) 2026 iampilot contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""JSON output for generated policies and extracted calls.

Policy output keeps IAM's key order (Version, Statement; Sid, Effect,
Action, Resource). Pretty output uses 2-space indentation, compact output
has no whitespace. Both end with a newline.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from iampilot.models.calls import ExtractedMethods
from iampilot.models.policy import BatchUploadResponse, GeneratePoliciesResult

logger = logging.getLogger(__name__)


def _finish(result: str) -> str:
    result = result.replace("\r\n", "\n").replace("\r", "\n")
    if not result.endswith("\n"):
        result += "\n"
    return result


def to_json(data: dict[str, Any], pretty: bool = True) -> str:
    if pretty:
        return _finish(json.dumps(data, indent=2, ensure_ascii=False))
    return _finish(json.dumps(data, separators=(",", ":"), ensure_ascii=False))


def policy_output(
    result: GeneratePoliciesResult,
    upload: Optional[BatchUploadResponse] = None,
) -> dict[str, Any]:
    data = result.to_dict()
    data.setdefault("Policies", [])
    if upload is not None:
        data["UploadResult"] = upload.to_dict()
    return data


def extraction_output(extracted: ExtractedMethods) -> dict[str, Any]:
    return extracted.model_dump(mode="json", exclude_none=True)


def write_output(content: str, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(content, encoding="utf-8", newline="\n")
    logger.info("Wrote output to %s", output_path)
