# scheduler/reporter.py
import os
import json
from datetime import datetime, timezone
from store.db import get_db
import pandas as pd
import logging

logger = logging.getLogger("reporter")
logger.setLevel(logging.INFO)

REPORT_DIR = os.getenv("REPORT_DIR", "./reports")

REPORT_COLUMNS = ["_id", "title", "author", "averageRating", "totalReviews"]


async def generate_rating_report(db=None, report_dir=None):
    """
    Write the current per-book ratings to dated JSON and CSV reports.

    Books are listed by average rating, highest first, then by review count.

    Args:
        db: Database handle. Defaults to get_db().
        report_dir (str, optional): Output directory. Defaults to REPORT_DIR.

    Returns:
        tuple: (json_path, csv_path)

    Output Files:
        - {report_dir}/ratings_{YYYY-MM-DD}.json
        - {report_dir}/ratings_{YYYY-MM-DD}.csv

    Note:
        Uses the UTC date; a second run on the same day overwrites the files.
        An empty catalog still produces both files, with a header-only CSV.
    """
    db = db if db is not None else get_db()
    report_dir = report_dir or REPORT_DIR
    os.makedirs(report_dir, exist_ok=True)

    docs = await db.books.find({}).to_list(length=None)
    rows = [
        {
            "_id": str(d["_id"]),
            "title": d.get("title"),
            "author": d.get("author"),
            "averageRating": d.get("average_rating", 0),
            "totalReviews": d.get("total_reviews", 0),
        }
        for d in docs
    ]
    rows.sort(key=lambda r: (r["averageRating"], r["totalReviews"]), reverse=True)

    filename_base = f"ratings_{datetime.now(timezone.utc).date().isoformat()}"
    json_path = os.path.join(report_dir, f"{filename_base}.json")
    csv_path = os.path.join(report_dir, f"{filename_base}.csv")

    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(rows, f, indent=2)

    pd.DataFrame(rows, columns=REPORT_COLUMNS).to_csv(csv_path, index=False)

    logger.info(f"Generated rating report for {len(rows)} books: {json_path}, {csv_path}")
    return json_path, csv_path
