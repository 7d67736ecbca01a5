"""CSV parsing for lesson keyword imports.

Admins upload vocabulary lists exported from spreadsheets. The expected
header row is `Japanese, English, Japanese Audio URL, English Audio URL`;
header matching is case-insensitive and also accepts snake_case names.
Parsers return a list of dictionaries with keys `japanese_text`,
`english_text`, `japanese_audio_url` and `english_audio_url`.
"""

import csv
import io
from typing import Dict, List, Tuple

_HEADER_ALIASES = {
    "japanese": "japanese_text",
    "japanese_text": "japanese_text",
    "english": "english_text",
    "english_text": "english_text",
    "japanese audio url": "japanese_audio_url",
    "japanese_audio_url": "japanese_audio_url",
    "english audio url": "english_audio_url",
    "english_audio_url": "english_audio_url",
}


def _normalize_header(name: str) -> str:
    key = (name or "").strip().lower()
    return _HEADER_ALIASES.get(key, key)


def parse_keyword_csv(b: bytes) -> Tuple[List[Dict], List[Dict]]:
    """Parse CSV bytes into keyword rows and per-row errors.

    Rows missing either the Japanese or English text are reported in the
    error list (with their 1-based data row number) and skipped.
    """
    try:
        text = b.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValueError("keyword CSV must be UTF-8 encoded")
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValueError("keyword CSV is empty")
    headers = [_normalize_header(h) for h in reader.fieldnames]
    if "japanese_text" not in headers or "english_text" not in headers:
        raise ValueError("keyword CSV needs Japanese and English columns")
    reader.fieldnames = headers
    rows = []
    errors = []
    for idx, row in enumerate(reader, start=1):
        item = {
            "japanese_text": (row.get("japanese_text") or "").strip(),
            "english_text": (row.get("english_text") or "").strip(),
            "japanese_audio_url": (row.get("japanese_audio_url") or "").strip() or None,
            "english_audio_url": (row.get("english_audio_url") or "").strip() or None,
        }
        if not item["japanese_text"] and not item["english_text"]:
            continue
        if not item["japanese_text"] or not item["english_text"]:
            errors.append({"row": idx, "error": "both Japanese and English text are required"})
            continue
        rows.append(item)
    return rows, errors
