"""Discovery of issue references in free text"""

import re
from dataclasses import dataclass
from typing import List, Optional

# "#12" referring to the current project, not glued to a word on its left
OWN_PROJECT_ISSUE_RE = re.compile(r"(?:\W|^)#([1-9]\d*)\b")
# Jira-style keys such as "ABC-123"
FOREIGN_KEY_RE = re.compile(r"([A-Z0-9]+)-([1-9]\d*)")


@dataclass(frozen=True)
class CrossReference:
    service: str
    project: str
    issue_id: str


class CrossReferenceParser:
    """Find references to issues of the current project and of a foreign tracker.

    References keep their encounter order and duplicates; own-project
    references come before foreign ones.
    """

    def __init__(self, service_id: str, foreign_service_id: str = "jira"):
        self.service_id = service_id
        self.foreign_service_id = foreign_service_id

    def parse(self, current_project: str, text: Optional[str]) -> List[CrossReference]:
        if not text:
            return []
        references = [
            CrossReference(self.service_id, current_project, issue_id)
            for issue_id in OWN_PROJECT_ISSUE_RE.findall(text)
        ]
        references.extend(
            CrossReference(self.foreign_service_id, project, issue_id)
            for project, issue_id in FOREIGN_KEY_RE.findall(text)
        )
        return references
