import os
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from merchant_locator.config import MAX_STORE_NAME_LENGTH, ROSTER_COLUMNS
from merchant_locator.errors import RosterLoadError
from merchant_locator.locality import LocalityTable, load_locality_table
from merchant_locator.models import RosterEntry


def clean_cell(value) -> Optional[str]:
    """Convert a spreadsheet cell to a stripped string, None for blanks and NaN."""
    if value is None:
        return None
    if isinstance(value, (float, np.floating)) and np.isnan(value):
        return None
    if isinstance(value, (np.integer, int)) and not isinstance(value, bool):
        return str(int(value))
    if isinstance(value, (np.floating, float)) and float(value).is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


def _read_frames(path: str) -> List[Tuple[str, pd.DataFrame]]:
    ext = os.path.splitext(path)[1].lower()
    try:
        if ext == ".xlsx":
            sheets: Dict[str, pd.DataFrame] = pd.read_excel(path, sheet_name=None, dtype=object)
            return list(sheets.items())
        if ext == ".csv":
            return [("", pd.read_csv(path, dtype=object))]
    except (OSError, ValueError) as e:
        raise RosterLoadError(f"Could not read roster {path}: {e}") from e
    raise RosterLoadError(f"Unsupported roster format: {ext or path}")


def rows_to_entries(
    frames: List[Tuple[str, pd.DataFrame]],
    table: Optional[LocalityTable] = None,
) -> List[RosterEntry]:
    """
    Turn roster frames into RosterEntry objects with ids 1..n.

    Rows with a blank name or a name longer than MAX_STORE_NAME_LENGTH are
    skipped and repeated (area, name) pairs collapse onto the first one. A
    blank area falls back to the sheet name.
    """
    table = table or load_locality_table()
    entries: List[RosterEntry] = []
    seen = set()
    skipped = 0
    unknown_areas = set()

    for sheet_name, df in frames:
        if ROSTER_COLUMNS["name"] not in df.columns:
            logger.warning(f"⚠️ Sheet '{sheet_name}' has no '{ROSTER_COLUMNS['name']}' column, skipped")
            continue
        for _, row in df.iterrows():
            def safe_get(key):
                col = ROSTER_COLUMNS[key]
                if col not in row.index:
                    return None
                return clean_cell(row[col])

            name = safe_get("name")
            if not name or len(name) > MAX_STORE_NAME_LENGTH:
                skipped += 1
                continue
            area = safe_get("area") or sheet_name.strip()
            if (area, name) in seen:
                skipped += 1
                continue
            seen.add((area, name))

            if area and not table.is_known_area(area):
                unknown_areas.add(area)
            entries.append(
                RosterEntry(
                    id=len(entries) + 1,
                    name=name,
                    administrative_area=area,
                    road_address=safe_get("road_address"),
                    old_address=safe_get("old_address"),
                    category=safe_get("category"),
                )
            )

    if skipped:
        logger.info(f"Skipped {skipped} blank, oversized or duplicate roster rows")
    if unknown_areas:
        logger.warning(f"⚠️ Areas not in the locality table: {', '.join(sorted(unknown_areas))}")
    return entries


def load_roster(path: str, table: Optional[LocalityTable] = None) -> List[RosterEntry]:
    """
    Load a merchant roster from an .xlsx workbook (every sheet) or a .csv file.

    Args:
        path (str): Roster file path.
        table (Optional[LocalityTable]): Table used to flag unknown areas.

    Returns:
        List[RosterEntry]: Entries with ids assigned 1..n in file order.

    Raises:
        RosterLoadError: If the file is missing, unreadable or not .xlsx/.csv.
    """
    if not os.path.exists(path):
        raise RosterLoadError(f"Roster file not found: {path}")
    entries = rows_to_entries(_read_frames(path), table)
    logger.info(f"📋 Loaded {len(entries)} roster entries from {path}")
    return entries
