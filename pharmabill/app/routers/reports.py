from fastapi import APIRouter, HTTPException
from typing import Optional
from datetime import date, datetime, time, timedelta, timezone

from ..db import get_conn
from .. import store
from ..gst_report import gst_summary

router = APIRouter(prefix="/reports", tags=["reports"])


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


@router.get("/gst")
def gst_report(start_date: Optional[date] = None, end_date: Optional[date] = None):
    """
    GST summary for sales and purchases dated between start_date and end_date
    (both inclusive, either may be left open).
    """
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date must be on or after start_date")
    since = _day_start(start_date) if start_date else None
    until = _day_start(end_date + timedelta(days=1)) if end_date else None
    with get_conn() as conn:
        with conn.cursor() as cur:
            sales = store.load_transactions(cur, start=since, end=until)
            purchases = store.load_purchases(cur, start=since, end=until)
            product_ids = {i.product_id for doc in [*sales, *purchases] for i in doc.items}
            products = store.load_products(cur, product_ids)
            gst = store.get_gst_settings(cur)
    summary = gst_summary(sales, purchases, products, gst)
    return {
        "start_date": str(start_date) if start_date else None,
        "end_date": str(end_date) if end_date else None,
        "gst": summary,
    }
