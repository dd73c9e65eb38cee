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

"""AccessDenied message parsing.

Finds the ``<principal> is not authorized to perform: <action> on resource:
<resource>`` sentence anywhere in noisy text (stack traces, wrapped SDK
errors, CLI output) and classifies the denial from the reason that follows.
Any partition token is accepted in ARNs.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from iampilot.errors import AccessDeniedParseError
from iampilot.models.denial import DenialType, ParsedDenial

logger = logging.getLogger(__name__)

_DENIAL_RE = re.compile(
    r"(?P<principal>arn:[A-Za-z0-9-]+:(?:iam|sts)::\d{12}:[^\s\"',]+)"
    r"\s+is\s+not\s+authorized\s+to\s+perform:?\s+"
    r"(?P<action>[A-Za-z0-9-]+:[A-Za-z0-9*]+)"
    r"\s+on\s+resource:?\s+[\"']?"
    r"(?P<resource>arn:[A-Za-z0-9-]+:[^\s\"']+|\*)",
)

_TRAILING_PUNCTUATION = ".,;)\"'"

# Checked in order against the text following the matched sentence.
_UNSUPPORTED_PHRASES = (
    "service control policy",
    "resource control policy",
    "permissions boundary",
    "session policy",
    "vpc endpoint policy",
)

_S3_BUCKET_ACTION_PREFIXES = (
    "ListBucket",
    "GetBucket",
    "PutBucket",
    "DeleteBucket",
    "CreateBucket",
    "GetLifecycleConfiguration",
    "PutLifecycleConfiguration",
    "GetEncryptionConfiguration",
    "PutEncryptionConfiguration",
    "GetAccelerateConfiguration",
    "GetReplicationConfiguration",
    "GetInventoryConfiguration",
    "GetAnalyticsConfiguration",
    "GetMetricsConfiguration",
)


def classify(reason_text: str) -> tuple[DenialType, Optional[str]]:
    text = " ".join(reason_text.lower().split())
    for phrase in _UNSUPPORTED_PHRASES:
        if phrase in text:
            return DenialType.UNSUPPORTED, phrase
    if "explicit deny in an identity-based policy" in text:
        return DenialType.EXPLICIT_IDENTITY, None
    if "resource-based policy" in text:
        return DenialType.RESOURCE_POLICY, None
    if "no identity-based policy allows" in text:
        return DenialType.IMPLICIT_IDENTITY, None
    if "explicit deny" in text:
        return DenialType.EXPLICIT_IDENTITY, None
    if text.startswith("because"):
        return DenialType.UNSUPPORTED, text
    return DenialType.IMPLICIT_IDENTITY, None


def parse(message: str) -> ParsedDenial:
    """Extract the principal, action and resource from an AccessDenied message."""
    match = _DENIAL_RE.search(message)
    if match is None:
        raise AccessDeniedParseError()
    resource = match.group("resource").rstrip(_TRAILING_PUNCTUATION)
    # Reason clause runs to the end of the line
    tail = message[match.end():].split("\n", 1)[0].strip()
    denial_type, reason = classify(tail)
    logger.debug("Parsed denial %s on %s as %s", match.group("action"), resource, denial_type.value)
    return ParsedDenial(
        principal_arn=match.group("principal").rstrip(_TRAILING_PUNCTUATION),
        action=match.group("action"),
        resource=resource,
        denial_type=denial_type,
        reason=reason,
    )


def normalize_s3_resource(action: str, resource: str) -> str:
    """Strip the object key from the resource of a bucket-level S3 action."""
    service, _, name = action.partition(":")
    if service.lower() != "s3" or not name.startswith(_S3_BUCKET_ACTION_PREFIXES):
        return resource
    parts = resource.split(":", 5)
    if len(parts) != 6 or parts[2] != "s3" or "/" not in parts[5]:
        return resource
    bucket = parts[5].split("/", 1)[0]
    return ":".join(parts[:5] + [bucket])
