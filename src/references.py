"""Image field parsing and Google Drive share-link recognition."""

from __future__ import annotations

import re

REFERENCE_SEPARATOR_PATTERN = re.compile(r"[,;\n]+")
# Checked in order, first match wins:
#   https://drive.google.com/file/d/FILEID/view?usp=sharing
#   https://drive.google.com/open?id=FILEID
#   https://drive.google.com/uc?id=FILEID&export=download
DRIVE_ID_PATTERNS = (
    re.compile(r"/file/d/([^/]+)"),
    re.compile(r"[?&]id=([^&]+)"),
)


def split_references(value: str) -> list[str]:
    parts = (part.strip() for part in REFERENCE_SEPARATOR_PATTERN.split(value))
    return [part for part in parts if part]


def extract_drive_file_id(reference: str) -> str | None:
    for pattern in DRIVE_ID_PATTERNS:
        match = pattern.search(reference)
        if match:
            return match.group(1)
    return None
